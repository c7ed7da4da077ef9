"""Unit tests for engine settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from agent_workflow_engine.config import EngineSettings

_ENV_VARS = (
    "LOG_LEVEL",
    "WORKFLOW_SESSIONS_PATH",
    "WORKFLOW_WORKING_DIRECTORY",
    "WORKFLOW_DEFAULT_MODEL",
    "WORKFLOW_GITHUB_TOKEN",
    "WORKFLOW_GITHUB_REPOSITORY",
    "GITHUB_BASE_URL",
)


@pytest.fixture(autouse=True)
def _clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_settings_defaults() -> None:
    settings = EngineSettings()

    assert settings.log_level == "INFO"
    assert settings.sessions_path == Path(".workflow/sessions")
    assert settings.default_model == "opus"
    assert settings.github_base_url == "https://api.github.com"
    assert settings.github_enabled is False


def test_settings_loads_from_dotenv(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text(
        "\n".join(
            [
                "LOG_LEVEL=debug",
                "WORKFLOW_SESSIONS_PATH=state/sessions",
                "WORKFLOW_GITHUB_TOKEN=test-token",
                "WORKFLOW_GITHUB_REPOSITORY=octo-org/octo-repo",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = EngineSettings()

    assert settings.log_level == "DEBUG"
    assert settings.sessions_path == Path("state/sessions")
    assert settings.github_token == "test-token"
    assert settings.github_enabled is True


def test_environment_overrides_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKFLOW_DEFAULT_MODEL", "sonnet")
    monkeypatch.setenv("GITHUB_BASE_URL", "https://ghe.example.com/api/v3")

    settings = EngineSettings()

    assert settings.default_model == "sonnet"
    assert settings.github_base_url == "https://ghe.example.com/api/v3"


def test_github_requires_token_and_repository(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKFLOW_GITHUB_TOKEN", "test-token")

    assert EngineSettings().github_enabled is False
