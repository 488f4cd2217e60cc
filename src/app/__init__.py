"""Student System API."""
