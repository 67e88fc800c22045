"""
Render pipeline.

IMPORTANT:
The pipeline is a DUMB ORCHESTRATOR.

It MUST NOT:
- interpret payload content
- choose templates by any rule other than the fallback chain
- retry any stage

Its sole responsibilities are:
- enforcing stage order
- enforcing timeouts and cancellation
- translating every failure into ``RenderFailed(stage, cause)``
- emitting one observation per state transition

Execution order:
    RECEIVED -> AUTHENTICATED -> MAPPED -> RESOLVED -> INJECTED
             -> RENDERED -> COMPLETED

``FAILED`` is reachable from every non-terminal state.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional
from uuid import uuid4

import anyio
from pydantic import BaseModel, ConfigDict, Field

from renderer.app.auth.verifier import AuthVerifier
from renderer.app.errors import (
    AuthVerifierUnavailable,
    RenderCancelled,
    RenderEngineError,
    RenderFailed,
    TemplateNotFound,
)
from renderer.app.events import (
    NullEventEmitter,
    RenderEvent,
    RenderEventEmitter,
    RenderEventType,
)
from renderer.app.injection.values import InjectionKey
from renderer.app.mapping.mapper import MapperContext
from renderer.app.rendering.context import RenderContext
from renderer.app.rendering.result import RenderResult
from renderer.app.rendering.state import RenderStage, RenderState
from renderer.app.rendering.substitution import TemplateSubstitution
from renderer.app.rendering.typesetting import Typesetter
from renderer.app.templates.resolver import TemplateResolver
from renderer.app.utils.hashing import compute_content_hash

if TYPE_CHECKING:
    from renderer.app.engine.builder import RenderEngine

logger = logging.getLogger("renderer.pipeline")

DEFAULT_RENDER_TIMEOUT_SECONDS = 60.0
DEFAULT_AUTH_TIMEOUT_SECONDS = 5.0


class RenderRequest(BaseModel):
    """One inbound render request."""

    request_id: str = Field(default_factory=lambda: uuid4().hex)
    tenant_code: str = Field(..., min_length=1)
    workspace_code: str = Field(..., min_length=1)
    document_type_code: str = Field(..., min_length=1)

    raw_body: bytes = Field(repr=False)
    credential: Optional[str] = Field(default=None, repr=False)
    headers: Mapping[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


@dataclass
class _Progress:
    state: RenderState = RenderState.RECEIVED
    stage: RenderStage = RenderStage.AUTH


class RenderPipeline:
    def __init__(
        self,
        *,
        engine: "RenderEngine",
        resolver: TemplateResolver,
        verifier: AuthVerifier,
        typesetter: Typesetter,
        render_timeout: float = DEFAULT_RENDER_TIMEOUT_SECONDS,
        auth_timeout: float = DEFAULT_AUTH_TIMEOUT_SECONDS,
    ) -> None:
        self._engine = engine
        self._resolver = resolver
        self._verifier = verifier
        self._typesetter = typesetter
        self._substitution = TemplateSubstitution(
            jinja_options=typesetter.jinja_options,
            filters=typesetter.filters,
        )
        self._render_timeout = render_timeout
        self._auth_timeout = auth_timeout

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def render(
        self,
        request: RenderRequest,
        *,
        emitter: Optional[RenderEventEmitter] = None,
        timeout: Optional[float] = None,
    ) -> RenderResult:
        """
        Execute the full render lifecycle for ``request``.

        Returns the ``RenderResult`` on success. Every failure is raised
        as ``RenderFailed``. Cancellation by the caller is recorded as a
        failure event and then propagated unchanged.
        """
        emitter = emitter or NullEventEmitter()
        progress = _Progress()
        started = time.perf_counter()
        deadline = timeout if timeout is not None else self._render_timeout

        await self._emit(
            emitter,
            request,
            RenderEventType.RENDER_RECEIVED,
            RenderState.RECEIVED,
            {
                "tenant_code": request.tenant_code,
                "workspace_code": request.workspace_code,
                "document_type_code": request.document_type_code,
            },
        )

        try:
            with anyio.fail_after(deadline):
                result = await self._run(request, emitter, progress)
        except anyio.get_cancelled_exc_class():
            with anyio.CancelScope(shield=True):
                await self._fail(
                    emitter,
                    request,
                    progress,
                    RenderCancelled("Render cancelled by caller"),
                    started,
                )
            raise
        except TimeoutError:
            failure = await self._fail(
                emitter,
                request,
                progress,
                RenderCancelled(f"Render exceeded {deadline}s timeout"),
                started,
            )
            raise failure from failure.cause
        except RenderEngineError as exc:
            failure = await self._fail(emitter, request, progress, exc, started)
            raise failure from exc
        except Exception as exc:
            logger.exception(
                "render_unexpected_error",
                extra={
                    "request_id": request.request_id,
                    "stage": progress.stage.value,
                },
            )
            failure = await self._fail(emitter, request, progress, exc, started)
            raise failure from exc

        logger.info(
            "render_completed",
            extra={
                "request_id": request.request_id,
                "template_id": result.template_id,
                "template_version": result.template_version,
                "template_scope": result.template_scope.value,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run(
        self,
        request: RenderRequest,
        emitter: RenderEventEmitter,
        progress: _Progress,
    ) -> RenderResult:
        # ----------------------------------------------------------
        # 1. Authentication
        # ----------------------------------------------------------
        progress.stage = RenderStage.AUTH
        try:
            with anyio.fail_after(self._auth_timeout):
                await self._verifier.verify(request.credential)
        except TimeoutError as exc:
            raise AuthVerifierUnavailable(
                f"Auth verifier did not answer within {self._auth_timeout}s"
            ) from exc

        progress.state = RenderState.AUTHENTICATED
        await self._emit(
            emitter, request, RenderEventType.AUTHENTICATED, progress.state
        )

        # ----------------------------------------------------------
        # 2. Mapping (parse + validate, before any injector)
        # ----------------------------------------------------------
        progress.stage = RenderStage.MAPPING
        mapper_context = MapperContext(
            request_id=request.request_id,
            tenant_code=request.tenant_code,
            workspace_code=request.workspace_code,
            document_type_code=request.document_type_code,
            headers=dict(request.headers),
        )
        mapped = self._engine.mappers.map(
            mapper_context, request.document_type_code, request.raw_body
        )

        progress.state = RenderState.MAPPED
        await self._emit(
            emitter,
            request,
            RenderEventType.PAYLOAD_MAPPED,
            progress.state,
            {"mapped_values": len(mapped.injectables)},
        )

        # ----------------------------------------------------------
        # 3. Template resolution (blocking store read)
        # ----------------------------------------------------------
        progress.stage = RenderStage.RESOLUTION
        template = await anyio.to_thread.run_sync(
            self._resolver.resolve,
            request.tenant_code,
            request.workspace_code,
            request.document_type_code,
        )
        if template is None:
            raise TemplateNotFound(
                request.tenant_code,
                request.workspace_code,
                request.document_type_code,
            )

        progress.state = RenderState.RESOLVED
        await self._emit(
            emitter,
            request,
            RenderEventType.TEMPLATE_RESOLVED,
            progress.state,
            {
                "template_id": template.id,
                "template_version": template.version,
                "template_scope": template.scope.value,
            },
        )

        # ----------------------------------------------------------
        # 4. Injection (mapper values first, then injectors)
        # ----------------------------------------------------------
        progress.stage = RenderStage.INJECTION
        selected_formats = self._engine.injectors.selected_formats(template)
        ctx = RenderContext(
            request_id=request.request_id,
            tenant_code=request.tenant_code,
            workspace_code=request.workspace_code,
            document_type_code=request.document_type_code,
            template=template,
            payload=mapped.payload,
            init_data=self._engine.init_data,
            headers=dict(request.headers),
            selected_formats=selected_formats,
        )
        for key, value in mapped.injectables.items():
            ctx.set_resolved(key, value)

        async def _on_resolved(key: InjectionKey, elapsed_ms: float) -> None:
            await self._emit(
                emitter,
                request,
                RenderEventType.INJECTOR_COMPLETED,
                progress.state,
                {"key": str(key), "elapsed_ms": round(elapsed_ms, 2)},
            )

        await self._engine.injectors.resolve_all(
            ctx, template.placeholders, on_resolved=_on_resolved
        )

        progress.state = RenderState.INJECTED
        await self._emit(
            emitter,
            request,
            RenderEventType.VALUES_INJECTED,
            progress.state,
            {
                "placeholders": len(template.placeholders),
                "mapper_supplied": sum(
                    1 for k in template.placeholders if k in mapped.injectables
                ),
            },
        )

        # ----------------------------------------------------------
        # 5. Substitution + typesetting
        # ----------------------------------------------------------
        progress.stage = RenderStage.RENDER
        rendered_at = datetime.now(timezone.utc)
        document = self._document_binding(request, template, rendered_at)
        source = self._substitution.render(
            template, ctx.resolved_values(), document, ctx.selected_formats
        )
        content = await self._typesetter.typeset(source)

        progress.state = RenderState.RENDERED
        await self._emit(
            emitter,
            request,
            RenderEventType.DOCUMENT_RENDERED,
            progress.state,
            {"size": len(content), "media_type": self._typesetter.media_type},
        )

        result = RenderResult(
            content=content,
            media_type=self._typesetter.media_type,
            file_extension=self._typesetter.file_extension,
            template_id=template.id,
            template_version=template.version,
            template_scope=template.scope,
            rendered_at=rendered_at,
            content_hash=compute_content_hash(content),
            request_id=request.request_id,
        )

        progress.state = RenderState.COMPLETED
        await self._emit(
            emitter,
            request,
            RenderEventType.RENDER_COMPLETED,
            progress.state,
            {"content_hash": result.content_hash},
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _document_binding(
        request: RenderRequest, template: Any, rendered_at: datetime
    ) -> Dict[str, Any]:
        return {
            "request_id": request.request_id,
            "tenant_code": request.tenant_code,
            "workspace_code": request.workspace_code,
            "document_type_code": request.document_type_code,
            "template_id": template.id,
            "template_version": template.version,
            "template_scope": template.scope.value,
            "rendered_at": rendered_at.isoformat(),
        }

    async def _fail(
        self,
        emitter: RenderEventEmitter,
        request: RenderRequest,
        progress: _Progress,
        cause: BaseException,
        started: float,
    ) -> RenderFailed:
        failure = RenderFailed(progress.stage, cause)
        previous = progress.state
        progress.state = RenderState.FAILED

        logger.warning(
            "render_failed",
            extra={
                "request_id": request.request_id,
                "stage": progress.stage.value,
                "kind": failure.kind.value,
                "error": type(cause).__name__,
                "previous_state": previous.value,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        await self._emit(
            emitter,
            request,
            RenderEventType.RENDER_FAILED,
            RenderState.FAILED,
            failure.to_dict(),
        )
        return failure

    @staticmethod
    async def _emit(
        emitter: RenderEventEmitter,
        request: RenderRequest,
        event_type: RenderEventType,
        state: RenderState,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            await emitter.emit(
                RenderEvent(
                    request_id=request.request_id,
                    event_type=event_type,
                    state=state,
                    details=details,
                )
            )
        except Exception:
            # Observability must never break a render
            logger.warning(
                "render_event_emission_failed",
                extra={
                    "request_id": request.request_id,
                    "event_type": event_type.value,
                },
            )
