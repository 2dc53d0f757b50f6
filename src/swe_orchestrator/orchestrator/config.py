"""Configuration for the orchestrator.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

To avoid collisions with other tools that may also use `GITHUB_TOKEN`, this
project uses a dedicated token variable: `ORCHESTRATOR_GITHUB_TOKEN`. The token
is optional: without it the orchestrator still runs workflows, it just cannot
post issue comments.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class OrchestratorSettings(BaseSettings):
    """Settings for the workflow orchestrator.

    Environment variables:
    - LOG_LEVEL                                (optional)
    - LOG_FORMAT                               (optional: json | text)
    - AGENT_STATE_PATH                         (optional)
    - ORCHESTRATOR_RUN_STORE                   (optional: json | memory | redis)
    - ORCHESTRATOR_REDIS_URL                   (required when the store is redis)
    - ORCHESTRATOR_GITHUB_TOKEN                (optional)
    - GITHUB_BASE_URL                          (optional)
    - ORCHESTRATOR_TRIGGER_LABELS              (optional)
    - ORCHESTRATOR_AUTO_ACCEPT_LABELS          (optional)
    - ORCHESTRATOR_LOCAL_MODE                  (optional)
    - ORCHESTRATOR_SANDBOX_URL                 (optional)
    - ORCHESTRATOR_SANDBOX_ROOT                (optional)
    - ORCHESTRATOR_COMMAND_TIMEOUT_SECONDS     (optional)
    - ORCHESTRATOR_MAX_VERIFICATION_ACTIONS    (optional)
    - ORCHESTRATOR_MAX_OUTPUT_CHARS            (optional)
    - ORCHESTRATOR_PLAN_APPROVAL_TIMEOUT_SECONDS (optional)
    - ORCHESTRATOR_PLAN_APPROVAL_POLL_SECONDS  (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `OrchestratorSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        validation_alias="LOG_FORMAT",
        description="Log line layout",
    )

    agent_state_path: Path = Field(
        default=Path("agent_state"),
        validation_alias="AGENT_STATE_PATH",
        description="Directory where local orchestrator state is persisted",
    )

    run_store: Literal["json", "memory", "redis"] = Field(
        default="json",
        validation_alias="ORCHESTRATOR_RUN_STORE",
        description="Backend used by the run registry",
    )
    redis_url: str = Field(
        default="",
        validation_alias="ORCHESTRATOR_REDIS_URL",
        description="Redis connection URL used when ORCHESTRATOR_RUN_STORE=redis",
    )

    github_token: str = Field(
        default="",
        validation_alias="ORCHESTRATOR_GITHUB_TOKEN",
        description="GitHub token used to post issue comments",
    )
    github_base_url: str = Field(
        default="https://api.github.com",
        validation_alias="GITHUB_BASE_URL",
        description="GitHub API base URL (useful for GitHub Enterprise)",
    )

    trigger_labels: str = Field(
        default="swe-agent,swe-agent-auto",
        validation_alias="ORCHESTRATOR_TRIGGER_LABELS",
        description="Comma-separated issue labels that start a run",
    )
    auto_accept_labels: str = Field(
        default="swe-agent-auto",
        validation_alias="ORCHESTRATOR_AUTO_ACCEPT_LABELS",
        description="Comma-separated trigger labels whose plan is accepted without review",
    )

    local_mode: bool = Field(
        default=False,
        validation_alias="ORCHESTRATOR_LOCAL_MODE",
        description=(
            "Run actions against the local working tree instead of a remote sandbox. "
            "Local mode also engages the command safety filter."
        ),
    )
    sandbox_url: str = Field(
        default="",
        validation_alias="ORCHESTRATOR_SANDBOX_URL",
        description="Base URL of the remote sandbox service (ignored in local mode)",
    )
    sandbox_root: Path = Field(
        default=Path("."),
        validation_alias="ORCHESTRATOR_SANDBOX_ROOT",
        description="Root directory that local-mode actions are confined to",
    )
    command_timeout_seconds: float = Field(
        default=120.0,
        validation_alias="ORCHESTRATOR_COMMAND_TIMEOUT_SECONDS",
        description="Per-action timeout enforced by the sandbox executor",
        gt=0,
    )

    max_verification_actions: int = Field(
        default=20,
        validation_alias="ORCHESTRATOR_MAX_VERIFICATION_ACTIONS",
        description="Action ceiling used by the verification safety valve",
        ge=1,
        le=500,
    )
    max_output_chars: int = Field(
        default=15000,
        validation_alias="ORCHESTRATOR_MAX_OUTPUT_CHARS",
        description="Maximum characters of a single action result kept in the transcript",
        ge=200,
    )
    plan_approval_timeout_seconds: float = Field(
        default=3600.0,
        validation_alias="ORCHESTRATOR_PLAN_APPROVAL_TIMEOUT_SECONDS",
        description="How long a run waits for a human to approve its test plan",
        ge=0,
    )
    plan_approval_poll_seconds: float = Field(
        default=5.0,
        validation_alias="ORCHESTRATOR_PLAN_APPROVAL_POLL_SECONDS",
        description="Interval between run status checks while waiting for approval",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _require_store_location(self) -> OrchestratorSettings:
        if self.run_store == "redis" and not self.redis_url.strip():
            raise ValueError("ORCHESTRATOR_REDIS_URL is required when ORCHESTRATOR_RUN_STORE=redis")
        return self

    @property
    def runs_state_file(self) -> Path:
        """Path where run records are persisted by the JSON store."""

        return self.agent_state_path / "runs.json"

    def parsed_trigger_labels(self) -> list[str]:
        return _split_csv(self.trigger_labels)

    def parsed_auto_accept_labels(self) -> list[str]:
        return _split_csv(self.auto_accept_labels)
