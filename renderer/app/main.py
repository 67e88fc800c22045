import sys
import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse
from sqlalchemy.engine import Engine

from renderer.app.api.document_types import router as document_types_router
from renderer.app.api.injectables import router as injectables_router
from renderer.app.api.render import router as render_router
from renderer.app.auth.verifier import (
    AuthVerifier,
    DisabledVerifier,
    HttpTokenVerifier,
    StaticTokenVerifier,
)
from renderer.app.config import Settings, configure_logging, get_settings
from renderer.app.db import create_db_engine
from renderer.app.engine.builder import EngineBuilder, load_extensions
from renderer.app.events import LoggingEventEmitter
from renderer.app.injection.builtins import register_builtins
from renderer.app.migrations.runner import MigrationRunner
from renderer.app.rendering.pipeline import RenderPipeline
from renderer.app.rendering.typesetting import build_typesetter
from renderer.app.templates.cache import TemplateCache
from renderer.app.templates.resolver import TemplateResolver
from renderer.app.templates.store import SqlTemplateStore

logger = logging.getLogger("renderer.main")


def get_app_version() -> str:
    """
    Resolve application version.

    Falls back to the source version when the package is not installed.
    """
    try:
        return version("document-renderer")
    except PackageNotFoundError:
        return "0.1.0"


def build_verifier(settings: Settings, http_client: httpx.AsyncClient) -> AuthVerifier:
    if settings.auth_mode == "static":
        return StaticTokenVerifier(
            token.get_secret_value() for token in settings.auth_static_tokens
        )
    if settings.auth_mode == "http":
        return HttpTokenVerifier(
            http_client,
            str(settings.auth_verify_url),
            timeout_seconds=settings.auth_timeout_seconds,
        )
    return DisabledVerifier()


async def _release(http_client: httpx.AsyncClient, db_engine: Engine) -> None:
    try:
        await http_client.aclose()
    except Exception:
        logger.warning("http_client_shutdown_failed")
    db_engine.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory for the rendering service.

    ``settings`` overrides environment configuration (used by tests).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Guarantees:
        - Fail-fast startup on invalid configuration, failed migrations
          or invalid registrations
        - Registries frozen before the first request is served
        - Pre-allocated shared HTTP transport
        """
        # ------------------------------------------------------------------
        # Load and validate configuration (FAIL FAST)
        # ------------------------------------------------------------------
        try:
            resolved_settings = settings or get_settings()
        except Exception:
            logger.exception("invalid_renderer_configuration")
            raise

        configure_logging(resolved_settings.log_level)
        logger.info(
            "renderer_startup_begin",
            extra={"version": get_app_version()},
        )
        app.state.settings = resolved_settings

        # ------------------------------------------------------------------
        # Database + migrations
        # ------------------------------------------------------------------
        db_engine = create_db_engine(resolved_settings.database_url)
        try:
            applied = MigrationRunner(db_engine).run()
        except Exception:
            logger.exception("startup_migrations_failed")
            db_engine.dispose()
            raise
        logger.info(
            "startup_migrations_complete",
            extra={"applied": applied},
        )

        app.state.db_engine = db_engine
        app.state.template_store = SqlTemplateStore(db_engine)

        # ------------------------------------------------------------------
        # Registries: build -> freeze
        # ------------------------------------------------------------------
        builder = EngineBuilder(
            injector_timeout=resolved_settings.injector_timeout_seconds,
            injector_concurrency=resolved_settings.injector_concurrency,
        )
        try:
            register_builtins(builder)
            load_extensions(builder, resolved_settings.extensions)
            engine = await builder.build()
        except Exception:
            logger.exception("render_engine_build_failed")
            db_engine.dispose()
            raise
        app.state.engine = engine

        # ------------------------------------------------------------------
        # Shared HTTP transport (auth introspection)
        # ------------------------------------------------------------------
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                timeout=resolved_settings.auth_timeout_seconds,
                connect=min(resolved_settings.auth_timeout_seconds, 5.0),
            ),
            limits=httpx.Limits(
                max_keepalive_connections=20,
                max_connections=50,
            ),
            headers={"User-Agent": f"document-renderer/{get_app_version()}"},
        )
        app.state.http_client = http_client

        # ------------------------------------------------------------------
        # Pipeline
        # ------------------------------------------------------------------
        try:
            resolver = TemplateResolver(
                app.state.template_store,
                system_workspace_code=resolved_settings.system_workspace_code,
                cache=TemplateCache(
                    ttl_seconds=resolved_settings.template_cache_ttl_seconds,
                    max_entries=resolved_settings.template_cache_max_entries,
                ),
            )
            pipeline = RenderPipeline(
                engine=engine,
                resolver=resolver,
                verifier=build_verifier(resolved_settings, http_client),
                typesetter=build_typesetter(
                    resolved_settings.typesetter,
                    template_dir=resolved_settings.template_dir,
                    timeout_seconds=resolved_settings.render_timeout_seconds,
                ),
                render_timeout=resolved_settings.render_timeout_seconds,
                auth_timeout=resolved_settings.auth_timeout_seconds,
            )
        except Exception:
            logger.exception("render_pipeline_setup_failed")
            await _release(http_client, db_engine)
            raise

        app.state.resolver = resolver
        app.state.event_emitter = LoggingEventEmitter(level=logging.DEBUG)
        app.state.pipeline = pipeline

        logger.info("renderer_startup_complete")

        try:
            yield
        finally:
            logger.info("renderer_shutdown_begin")
            await _release(http_client, db_engine)

    app = FastAPI(
        title="Document Renderer",
        description=(
            "Multi-tenant document rendering with template fallback "
            "and pluggable value injectors."
        ),
        version=get_app_version(),
        docs_url="/docs",
        redoc_url=None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.include_router(render_router)
    app.include_router(document_types_router)
    app.include_router(injectables_router)

    @app.get(
        "/healthz",
        tags=["Monitoring"],
        summary="Liveness and readiness probe",
    )
    async def health_check():
        """
        Verifies that the runtime is alive and the engine is built.
        """
        ready = getattr(app.state, "pipeline", None) is not None
        return ORJSONResponse(
            status_code=200 if ready else 503,
            content={
                "status": "ok" if ready else "starting",
                "service": "renderer",
                "version": app.version,
                "runtime": f"python {sys.version.split()[0]}",
            },
        )

    return app


app = create_app()
