"""Observability helpers (tracing)."""
