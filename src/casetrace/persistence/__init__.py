"""Persistence layer: database connectivity, repositories and migrations."""
