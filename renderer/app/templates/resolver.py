"""
Template resolution through the organizational fallback chain.

For a request (tenant, workspace, document type) the chain is tried in
order and the first step with an active match wins:

1. the workspace's own template;
2. the tenant's system workspace template;
3. the global system template.

Within one step the highest active version wins. Resolution is a pure
read against the store; it never writes and never blocks other readers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from renderer.app.templates.cache import TemplateCache
from renderer.app.templates.models import TemplateDefinition, TemplateScope
from renderer.app.templates.store import TemplateStore

logger = logging.getLogger("renderer.templates")

DEFAULT_SYSTEM_WORKSPACE_CODE = "SYS"


@dataclass(frozen=True)
class LookupRequest:
    tenant_code: str
    workspace_code: str
    document_type_code: str
    system_workspace_code: str


Predicate = Callable[[TemplateDefinition, LookupRequest], bool]


@dataclass(frozen=True)
class FallbackStep:
    scope: TemplateScope
    matches: Predicate


FALLBACK_CHAIN: Tuple[FallbackStep, ...] = (
    FallbackStep(
        scope=TemplateScope.WORKSPACE,
        matches=lambda d, r: (
            d.tenant_code == r.tenant_code
            and d.workspace_code == r.workspace_code
        ),
    ),
    FallbackStep(
        scope=TemplateScope.TENANT_SYSTEM_WORKSPACE,
        matches=lambda d, r: (
            d.tenant_code == r.tenant_code
            and d.workspace_code == r.system_workspace_code
        ),
    ),
    FallbackStep(
        scope=TemplateScope.GLOBAL_SYSTEM,
        matches=lambda d, r: True,
    ),
)


class TemplateResolver:
    def __init__(
        self,
        store: TemplateStore,
        *,
        system_workspace_code: str = DEFAULT_SYSTEM_WORKSPACE_CODE,
        cache: Optional[TemplateCache] = None,
        chain: Tuple[FallbackStep, ...] = FALLBACK_CHAIN,
    ) -> None:
        self._store = store
        self._system_workspace_code = system_workspace_code
        self._cache = cache
        self._chain = chain

    def resolve(
        self,
        tenant_code: str,
        workspace_code: str,
        document_type_code: str,
    ) -> Optional[TemplateDefinition]:
        """
        Return the template for the request, or ``None`` if no step of
        the fallback chain has an active match.
        """
        cache_key = (tenant_code, workspace_code, document_type_code)
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        request = LookupRequest(
            tenant_code=tenant_code,
            workspace_code=workspace_code,
            document_type_code=document_type_code,
            system_workspace_code=self._system_workspace_code,
        )
        candidates = [
            d
            for d in self._store.candidates(document_type_code)
            if d.active and d.document_type_code == document_type_code
        ]

        for step in self._chain:
            matches: List[TemplateDefinition] = [
                d
                for d in candidates
                if d.scope is step.scope and step.matches(d, request)
            ]
            if not matches:
                continue

            chosen = max(matches, key=lambda d: d.version)
            logger.debug(
                "template_resolved",
                extra={
                    "tenant_code": tenant_code,
                    "workspace_code": workspace_code,
                    "document_type_code": document_type_code,
                    "template_id": chosen.id,
                    "scope": chosen.scope.value,
                    "version": chosen.version,
                },
            )
            if self._cache is not None:
                self._cache.put(cache_key, chosen)
            return chosen

        logger.info(
            "template_not_found",
            extra={
                "tenant_code": tenant_code,
                "workspace_code": workspace_code,
                "document_type_code": document_type_code,
            },
        )
        return None
