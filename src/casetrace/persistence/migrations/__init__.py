"""Alembic migrations for the casetrace Postgres schema."""
