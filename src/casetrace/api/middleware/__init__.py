"""ASGI middleware for the casetrace API."""
