"""Configuration for the workflow engine.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Reporter credentials are deliberately *not* part of these settings: each
reporter receives its own configuration block from the workflow definition,
typically resolved from `{{ env.VAR }}` placeholders.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Settings for the workflow engine.

    Environment variables:
    - LOG_LEVEL                   (optional)
    - WORKFLOW_SESSIONS_PATH      (optional)
    - WORKFLOW_WORKING_DIRECTORY  (optional)
    - WORKFLOW_DEFAULT_MODEL      (optional)
    - WORKFLOW_GITHUB_TOKEN       (optional)
    - WORKFLOW_GITHUB_REPOSITORY  (optional)
    - GITHUB_BASE_URL             (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    sessions_path: Path = Field(
        default=Path(".workflow/sessions"),
        validation_alias="WORKFLOW_SESSIONS_PATH",
        description="Directory where per-run session state is persisted",
    )

    working_directory: Path = Field(
        default=Path("."),
        validation_alias="WORKFLOW_WORKING_DIRECTORY",
        description="Working directory handed to the agent executor",
    )

    default_model: str = Field(
        default="opus",
        validation_alias="WORKFLOW_DEFAULT_MODEL",
        description="Model used when neither the step nor the workflow defaults name one",
    )

    github_token: str = Field(
        default="",
        validation_alias="WORKFLOW_GITHUB_TOKEN",
        description="GitHub token used by built-in handlers (issue creation, draft PRs)",
    )
    github_repository: str = Field(
        default="",
        validation_alias="WORKFLOW_GITHUB_REPOSITORY",
        description="Repository in the form 'owner/repo' used by built-in handlers",
    )
    github_base_url: str = Field(
        default="https://api.github.com",
        validation_alias="GITHUB_BASE_URL",
        description="GitHub API base URL (useful for GitHub Enterprise)",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    @property
    def github_enabled(self) -> bool:
        """True when both a token and a repository are configured."""

        return bool(self.github_token.strip() and self.github_repository.strip())
