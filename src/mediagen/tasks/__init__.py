"""Generation task lifecycle."""
