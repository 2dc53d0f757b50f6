"""Configuration for the REST server.

Orchestration settings (run store, GitHub token, sandbox) come from
:class:`swe_orchestrator.orchestrator.config.OrchestratorSettings`; this only
covers HTTP concerns.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Bind address and browser access for the webhook and runs API."""

    host: str = Field(default="127.0.0.1", validation_alias="ORCHESTRATOR_HOST")
    port: int = Field(default=8000, validation_alias="ORCHESTRATOR_PORT", ge=1, le=65535)

    # Webhooks are server-to-server; browsers only need this for the runs API.
    cors_origins: str = Field(
        default="",
        validation_alias="ORCHESTRATOR_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
