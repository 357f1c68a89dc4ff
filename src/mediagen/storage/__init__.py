"""Object storage access, retrying uploads and result re-hosting."""
