"""
Schema migration runner.

Upgrades the template database to the newest Alembic revision before the
service starts serving. Revision scripts live in ``versions/`` next to
this module; ``env.py`` runs them on the connection handed over here, so
the whole upgrade shares one transaction.

Running the runner again after success is a no-op. Any failure raises
``MigrationError`` and is fatal to startup.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Union

from alembic import command
from alembic.config import Config as AlembicConfig
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from alembic.script.revision import RevisionError
from alembic.util.exc import CommandError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from renderer.app.errors import MigrationError

logger = logging.getLogger("renderer.migrations")

SCRIPT_LOCATION = Path(__file__).resolve().parent


class MigrationRunner:
    def __init__(
        self,
        engine: Engine,
        *,
        script_location: Union[str, Path] = SCRIPT_LOCATION,
    ) -> None:
        self._engine = engine
        self._script_location = str(script_location)

    def _config(self) -> AlembicConfig:
        cfg = AlembicConfig()
        cfg.set_main_option("script_location", self._script_location)
        return cfg

    def _scripts(self) -> ScriptDirectory:
        try:
            return ScriptDirectory.from_config(self._config())
        except CommandError as exc:
            raise MigrationError(f"Invalid migration scripts: {exc}") from exc

    def current(self) -> Optional[str]:
        """Revision the database is at, ``None`` before the first upgrade."""
        try:
            with self._engine.connect() as conn:
                return MigrationContext.configure(conn).get_current_revision()
        except SQLAlchemyError as exc:
            raise MigrationError(
                f"Unable to read migration state: {exc}"
            ) from exc

    def pending(self) -> List[str]:
        """Revision ids not yet applied, oldest first."""
        scripts = self._scripts()
        current = self.current()
        applied = set()
        try:
            if current is not None:
                applied = {
                    script.revision
                    for script in scripts.iterate_revisions(current, "base")
                }
            ordered = reversed(list(scripts.walk_revisions()))
        except RevisionError as exc:
            raise MigrationError(
                f"Database revision {current!r} is not in the migration scripts: {exc}",
                revision=current,
            ) from exc
        return [script.revision for script in ordered if script.revision not in applied]

    def run(self) -> List[str]:
        """
        Upgrade to ``head``. Returns the revision ids applied.
        """
        pending = self.pending()
        if not pending:
            logger.info("migrations_up_to_date")
            return []

        cfg = self._config()
        try:
            with self._engine.begin() as conn:
                cfg.attributes["connection"] = conn
                command.upgrade(cfg, "head")
        except (CommandError, SQLAlchemyError) as exc:
            logger.error(
                "migration_failed",
                extra={"pending": pending},
            )
            raise MigrationError(
                f"Upgrade to head failed: {exc}",
                revision=pending[-1],
            ) from exc

        for revision in pending:
            logger.info("migration_applied", extra={"revision": revision})
        return pending
