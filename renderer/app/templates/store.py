"""
Template persistence.

The resolver reads templates through the ``TemplateStore`` lookup
contract: all definitions for one document type. Stores are read-mostly;
publishing appends a new immutable version.

Two stores are provided:
- ``InMemoryTemplateStore`` for tests and embedded use.
- ``SqlTemplateStore`` backed by the ``document_templates`` table created
  by the migration runner.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

import orjson
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from renderer.app.errors import TemplateVersionConflict
from renderer.app.injection.values import InjectionKey
from renderer.app.templates.models import TemplateDefinition, TemplateScope

logger = logging.getLogger("renderer.templates")

Coordinates = Tuple[TemplateScope, Optional[str], Optional[str], str]


def _coordinates(definition: TemplateDefinition) -> Coordinates:
    return (
        definition.scope,
        definition.tenant_code,
        definition.workspace_code,
        definition.document_type_code,
    )


class TemplateStore(Protocol):
    def candidates(self, document_type_code: str) -> List[TemplateDefinition]:
        """Return every stored definition for ``document_type_code``."""
        ...


# ----------------------------------------------------------------------
# In-memory store
# ----------------------------------------------------------------------


class InMemoryTemplateStore:
    def __init__(self, definitions: Optional[List[TemplateDefinition]] = None) -> None:
        self._lock = threading.Lock()
        self._by_id: Dict[str, TemplateDefinition] = {}
        for definition in definitions or []:
            self.publish(definition)

    def publish(self, definition: TemplateDefinition) -> TemplateDefinition:
        with self._lock:
            if definition.id in self._by_id:
                raise TemplateVersionConflict(
                    f"Template id '{definition.id}' already exists"
                )
            for existing in self._by_id.values():
                if (
                    _coordinates(existing) == _coordinates(definition)
                    and existing.version == definition.version
                ):
                    raise TemplateVersionConflict(
                        f"Version {definition.version} already published "
                        f"for '{definition.document_type_code}' "
                        f"at {definition.scope.value}"
                    )
            self._by_id[definition.id] = definition
        return definition

    def set_active(self, template_id: str, active: bool) -> None:
        with self._lock:
            existing = self._by_id[template_id]
            self._by_id[template_id] = existing.model_copy(
                update={"active": active}
            )

    def candidates(self, document_type_code: str) -> List[TemplateDefinition]:
        with self._lock:
            return [
                d
                for d in self._by_id.values()
                if d.document_type_code == document_type_code
            ]


# ----------------------------------------------------------------------
# SQL store
# ----------------------------------------------------------------------

_SELECT_BY_TYPE = text(
    """
    SELECT id, scope, tenant_code, workspace_code, document_type_code,
           body, placeholders, placeholder_formats, active, version,
           description, published_at
    FROM document_templates
    WHERE document_type_code = :document_type_code
    """
)

_MAX_VERSION = text(
    """
    SELECT MAX(version) FROM document_templates
    WHERE scope = :scope
      AND COALESCE(tenant_code, '') = :tenant_code
      AND COALESCE(workspace_code, '') = :workspace_code
      AND document_type_code = :document_type_code
    """
)

_INSERT = text(
    """
    INSERT INTO document_templates (
        id, scope, tenant_code, workspace_code, document_type_code,
        body, placeholders, placeholder_formats, active, version,
        description, published_at
    ) VALUES (
        :id, :scope, :tenant_code, :workspace_code, :document_type_code,
        :body, :placeholders, :placeholder_formats, :active, :version,
        :description, :published_at
    )
    """
)

_SET_ACTIVE = text(
    "UPDATE document_templates SET active = :active WHERE id = :id"
)


def _dump_placeholders(keys: Tuple[InjectionKey, ...]) -> str:
    return orjson.dumps([k.model_dump(mode="json") for k in keys]).decode("utf-8")


def _load_placeholders(raw: Optional[str]) -> Tuple[InjectionKey, ...]:
    if not raw:
        return ()
    return tuple(InjectionKey.model_validate(item) for item in orjson.loads(raw))


def _dump_formats(formats: Dict[str, str]) -> Optional[str]:
    if not formats:
        return None
    return orjson.dumps(formats).decode("utf-8")


def _load_formats(raw: Optional[str]) -> Dict[str, str]:
    if not raw:
        return {}
    return dict(orjson.loads(raw))


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw is None or isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw))


class SqlTemplateStore:
    """
    SQL-backed template store (SQLAlchemy Core).

    Each call opens a short-lived connection, so the store is safe to
    use from worker threads.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def candidates(self, document_type_code: str) -> List[TemplateDefinition]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                _SELECT_BY_TYPE, {"document_type_code": document_type_code}
            ).mappings().all()
        return [self._row_to_definition(row) for row in rows]

    def publish(self, definition: TemplateDefinition) -> TemplateDefinition:
        """
        Insert ``definition`` as a new immutable version.

        Raises ``TemplateVersionConflict`` unless ``definition.version``
        is higher than every version already stored at the same
        coordinates.
        """
        published_at = definition.published_at or datetime.now(timezone.utc)
        params = {
            "scope": definition.scope.value,
            "tenant_code": definition.tenant_code or "",
            "workspace_code": definition.workspace_code or "",
            "document_type_code": definition.document_type_code,
        }

        try:
            with self._engine.begin() as conn:
                current = conn.execute(_MAX_VERSION, params).scalar()
                if current is not None and definition.version <= current:
                    raise TemplateVersionConflict(
                        f"Version {definition.version} is not newer than "
                        f"published version {current} for "
                        f"'{definition.document_type_code}' at "
                        f"{definition.scope.value}"
                    )
                conn.execute(
                    _INSERT,
                    {
                        "id": definition.id,
                        "scope": definition.scope.value,
                        "tenant_code": definition.tenant_code,
                        "workspace_code": definition.workspace_code,
                        "document_type_code": definition.document_type_code,
                        "body": definition.body,
                        "placeholders": _dump_placeholders(definition.placeholders),
                        "placeholder_formats": _dump_formats(
                            definition.placeholder_formats
                        ),
                        "active": definition.active,
                        "version": definition.version,
                        "description": definition.description,
                        "published_at": published_at.isoformat(),
                    },
                )
        except IntegrityError as exc:
            raise TemplateVersionConflict(
                f"Template '{definition.id}' conflicts with a stored version"
            ) from exc

        logger.info(
            "template_published",
            extra={
                "template_id": definition.id,
                "scope": definition.scope.value,
                "document_type_code": definition.document_type_code,
                "version": definition.version,
            },
        )
        return definition.model_copy(update={"published_at": published_at})

    def set_active(self, template_id: str, active: bool) -> None:
        with self._engine.begin() as conn:
            result = conn.execute(_SET_ACTIVE, {"id": template_id, "active": active})
        if result.rowcount == 0:
            raise KeyError(template_id)

    @staticmethod
    def _row_to_definition(row: Any) -> TemplateDefinition:
        return TemplateDefinition(
            id=row["id"],
            scope=TemplateScope(row["scope"]),
            tenant_code=row["tenant_code"],
            workspace_code=row["workspace_code"],
            document_type_code=row["document_type_code"],
            body=row["body"],
            placeholders=_load_placeholders(row["placeholders"]),
            placeholder_formats=_load_formats(row["placeholder_formats"]),
            active=bool(row["active"]),
            version=row["version"],
            description=row["description"],
            published_at=_parse_timestamp(row["published_at"]),
        )
