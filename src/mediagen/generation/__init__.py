"""Generation submission flow, HTTP surface and error taxonomy."""
