"""casetrace HTTP API."""
