"""Database engine construction."""

from __future__ import annotations

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

logger = logging.getLogger("renderer.db")


def _normalize_url(url: str) -> str:
    # Force psycopg v3 for bare postgres URLs
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    return url


def create_db_engine(database_url: str, *, echo: bool = False) -> Engine:
    """
    Build the engine used by the template store and migration runner.

    In-memory SQLite shares a single connection across threads so that
    migrations and reads see the same database.
    """
    database_url = _normalize_url(database_url)
    url = make_url(database_url)

    kwargs = {}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, future=True, echo=echo, **kwargs)
    logger.info(
        "database_engine_created",
        extra={"backend": url.get_backend_name()},
    )
    return engine
