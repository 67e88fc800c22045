import pytest
from pydantic import ValidationError

from renderer.app.config import Settings


def test_static_auth_requires_tokens():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, auth_mode="static")


def test_http_auth_requires_url():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, auth_mode="http")


def test_injector_timeout_cannot_exceed_render_timeout():
    with pytest.raises(ValidationError):
        Settings(
            _env_file=None,
            auth_mode="disabled",
            render_timeout_seconds=5,
            injector_timeout_seconds=10,
        )


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("RENDERER_AUTH_MODE", "static")
    monkeypatch.setenv("RENDERER_AUTH_STATIC_TOKENS", '["k1", "k2"]')
    monkeypatch.setenv("RENDERER_SYSTEM_WORKSPACE_CODE", "ROOT")
    monkeypatch.setenv("RENDERER_TYPESETTER", "text")

    settings = Settings(_env_file=None)

    assert settings.system_workspace_code == "ROOT"
    assert settings.typesetter == "text"
    assert [t.get_secret_value() for t in settings.auth_static_tokens] == ["k1", "k2"]
    assert "k1" not in repr(settings)


def test_settings_are_frozen():
    settings = Settings(_env_file=None, auth_mode="disabled")

    with pytest.raises(ValidationError):
        settings.log_level = "DEBUG"
