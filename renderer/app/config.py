"""
Centralized configuration for the rendering service.

Pydantic v2 settings management to enforce strict validation, zero
secret leakage, and fast failure on invalid configuration. All settings
are read from ``RENDERER_*`` environment variables (or ``.env``).

List-valued settings (``RENDERER_AUTH_STATIC_TOKENS``,
``RENDERER_EXTENSIONS``) are given as JSON arrays.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Literal, Optional

from pydantic import AnyHttpUrl, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

Code = Annotated[
    str,
    Field(
        pattern=r"^[A-Za-z0-9_-]{1,64}$",
        description="Tenant / workspace / document type code",
    ),
]

PositiveSeconds = Annotated[float, Field(gt=0, le=600)]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.

    Fails fast at startup if values are missing, malformed or
    inconsistent with each other.
    """

    # ---------------------------------------------------------------------
    # Persistence
    # ---------------------------------------------------------------------

    database_url: Annotated[
        str,
        Field(
            default="sqlite:///./renderer.db",
            min_length=1,
            description="SQLAlchemy database URL for template storage",
        ),
    ]

    # ---------------------------------------------------------------------
    # Template resolution
    # ---------------------------------------------------------------------

    system_workspace_code: Code = "SYS"

    template_cache_ttl_seconds: Annotated[
        float,
        Field(default=60.0, gt=0, description="Resolved-template cache TTL"),
    ]
    template_cache_max_entries: Annotated[int, Field(default=1000, ge=1)]

    # ---------------------------------------------------------------------
    # Render execution
    # ---------------------------------------------------------------------

    render_timeout_seconds: PositiveSeconds = 60.0
    injector_timeout_seconds: PositiveSeconds = 30.0
    injector_concurrency: Annotated[int, Field(default=16, ge=1, le=256)]

    typesetter: Literal["lualatex", "text"] = "lualatex"
    template_dir: Annotated[
        Optional[Path],
        Field(
            default=None,
            description="Extra TEXINPUTS directory for LaTeX assets",
        ),
    ]

    max_body_size_kb: Annotated[
        int,
        Field(
            default=1024,
            ge=1,
            le=10240,
            description="Maximum accepted request body size",
        ),
    ]

    extensions: Annotated[
        List[str],
        Field(
            default_factory=list,
            description="Extension entry points as 'module:function'",
        ),
    ]

    # ---------------------------------------------------------------------
    # Authentication
    # ---------------------------------------------------------------------

    auth_mode: Literal["static", "http", "disabled"] = "static"
    auth_static_tokens: Annotated[
        List[SecretStr],
        Field(
            default_factory=list,
            description="Accepted API keys, redacted from logs",
        ),
    ]
    auth_verify_url: Optional[AnyHttpUrl] = None
    auth_timeout_seconds: PositiveSeconds = 5.0

    # ---------------------------------------------------------------------
    # Logging
    # ---------------------------------------------------------------------

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="RENDERER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    @model_validator(mode="after")
    def _check_auth(self) -> "Settings":
        if self.auth_mode == "http" and self.auth_verify_url is None:
            raise ValueError("auth_mode=http requires auth_verify_url")
        if self.auth_mode == "static" and not self.auth_static_tokens:
            raise ValueError("auth_mode=static requires auth_static_tokens")
        return self

    @model_validator(mode="after")
    def _check_timeouts(self) -> "Settings":
        if self.injector_timeout_seconds > self.render_timeout_seconds:
            raise ValueError(
                "injector_timeout_seconds must not exceed render_timeout_seconds"
            )
        return self

    @property
    def max_body_size_bytes(self) -> int:
        return self.max_body_size_kb * 1024


# -------------------------------------------------------------------------
# Logging
# -------------------------------------------------------------------------

def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger("renderer").setLevel(level)


# -------------------------------------------------------------------------
# Settings Dependency Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Dependency injection provider for application settings.
    """
    return Settings()
