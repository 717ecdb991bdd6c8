"""Alembic environment for casetrace migrations.

Executed by Alembic itself. When the caller passes a connection through
``config.attributes["connection"]`` (see casetrace.persistence.migrate), it
is reused; otherwise a connection is opened on the admin engine.
"""

from __future__ import annotations

from alembic import context

from casetrace.persistence.db import get_admin_engine, get_database_url

target_metadata = None


def run_migrations_offline() -> None:
    """Emit migration SQL to stdout without a database connection."""
    context.configure(
        url=get_database_url(admin=True),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live connection."""
    connection = context.config.attributes.get("connection")
    if connection is not None:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()
        return

    with get_admin_engine().connect() as conn:
        context.configure(connection=conn, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
