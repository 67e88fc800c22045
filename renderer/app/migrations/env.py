"""
Alembic environment for the template schema.

``MigrationRunner`` hands over an open connection through
``config.attributes["connection"]``. When run from the alembic CLI the
URL comes from the ``sqlalchemy.url`` option or ``RENDERER_DATABASE_URL``.
"""

from __future__ import annotations

import os

from alembic import context

from renderer.app.db import create_db_engine

config = context.config

# Schema is defined by the revision scripts only
target_metadata = None


def _database_url() -> str:
    url = config.get_main_option("sqlalchemy.url") or os.getenv("RENDERER_DATABASE_URL")
    if not url:
        raise RuntimeError("No database URL configured for migrations")
    return url


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connection = config.attributes.get("connection")
    if connection is not None:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()
        return

    engine = create_db_engine(_database_url())
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, target_metadata=target_metadata)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
