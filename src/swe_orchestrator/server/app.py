"""FastAPI app factory.

Endpoints are thin wrappers over the run registry and the trigger handlers.
"""

from __future__ import annotations

import json
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from swe_orchestrator import __version__
from swe_orchestrator.orchestrator.config import OrchestratorSettings
from swe_orchestrator.orchestrator.github.client import CommentPoster, build_comment_poster
from swe_orchestrator.orchestrator.runs.launcher import build_launcher
from swe_orchestrator.orchestrator.runs.registry import RunRegistry, build_registry, create_key
from swe_orchestrator.orchestrator.triggers.handlers import (
    HandlerContext,
    HandlerRegistry,
    RunStarter,
    default_handlers,
)
from swe_orchestrator.orchestrator.workflow.events import TriggerEvent
from swe_orchestrator.server.config import ServerSettings
from swe_orchestrator.server.models import ApiRun, WebhookResponse

logger = logging.getLogger(__name__)

EVENT_HEADER = "X-GitHub-Event"


def create_app(
    *,
    settings: OrchestratorSettings | None = None,
    server_settings: ServerSettings | None = None,
    registry: RunRegistry | None = None,
    launcher: RunStarter | None = None,
    comment_poster: CommentPoster | None = None,
    handlers: HandlerRegistry | None = None,
) -> FastAPI:
    settings = settings or OrchestratorSettings()
    server_settings = server_settings or ServerSettings()
    registry = registry or build_registry(settings)
    context = HandlerContext(
        settings=settings,
        registry=registry,
        comment_poster=comment_poster
        or build_comment_poster(token=settings.github_token, base_url=settings.github_base_url),
        launcher=launcher or build_launcher(settings, registry),
        logger=logging.getLogger("swe_orchestrator.triggers"),
    )
    handlers = handlers or default_handlers()

    app = FastAPI(
        title="SWE Orchestrator",
        version=__version__,
        description="Webhook intake and run inspection for the workflow orchestrator.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )
    app.state.settings = settings
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    def health() -> dict[str, object]:
        return {"status": "ok", "version": __version__, "handlers": handlers.kinds()}

    @app.post("/api/webhooks/github", response_model=WebhookResponse)
    async def github_webhook(request: Request) -> WebhookResponse:
        event_type = request.headers.get(EVENT_HEADER, "").strip()
        if not event_type:
            raise HTTPException(status_code=400, detail=f"Missing {EVENT_HEADER} header")
        try:
            payload = json.loads(await request.body())
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise HTTPException(status_code=400, detail="Invalid JSON payload") from e
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Webhook payload must be a JSON object")

        event = TriggerEvent(type=event_type, payload=payload)
        try:
            outcome = await run_in_threadpool(handlers.handle, context, event)
        except Exception as e:
            # Answer 200 so the sender does not redeliver a payload that fails deterministically.
            logger.exception("Webhook handler failed", extra={"kind": event.kind})
            return WebhookResponse(status="error", message=str(e))

        return WebhookResponse(
            status=outcome.status, key=outcome.key, run_id=outcome.run_id, message=outcome.message
        )

    @app.get("/api/runs/{owner}/{repo}/{issue_number}", response_model=ApiRun)
    def get_run(owner: str, repo: str, issue_number: int) -> ApiRun:
        record = registry.get(create_key(owner, repo, issue_number))
        if record is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return ApiRun.from_record(record)

    @app.get("/api/runs", response_model=list[ApiRun])
    def list_runs(repo: str) -> list[ApiRun]:
        owner, sep, name = repo.partition("/")
        if not sep or not owner or not name or "/" in name:
            raise HTTPException(status_code=400, detail="repo must be in the form owner/repo")
        return [ApiRun.from_record(r) for r in registry.list_by_repository(owner, name)]

    return app
