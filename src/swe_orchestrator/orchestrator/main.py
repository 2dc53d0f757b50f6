"""CLI entrypoint for the workflow orchestrator."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from swe_orchestrator import __version__
from swe_orchestrator.orchestrator.config import OrchestratorSettings
from swe_orchestrator.orchestrator.github.client import build_comment_poster
from swe_orchestrator.orchestrator.logging import configure_logging
from swe_orchestrator.orchestrator.runs.launcher import RunLauncher, build_launcher
from swe_orchestrator.orchestrator.runs.registry import (
    RunRecord,
    RunRegistry,
    build_registry,
    create_key,
)
from swe_orchestrator.orchestrator.runs.stores import InMemoryKeyValueStore
from swe_orchestrator.orchestrator.triggers.handlers import HandlerContext, default_handlers
from swe_orchestrator.orchestrator.workflow.events import TriggerEvent
from swe_orchestrator.orchestrator.workflow.policy import decide_verification
from swe_orchestrator.orchestrator.workflow.state import (
    Marker,
    PlanItem,
    TargetRepository,
    TranscriptEntry,
    VerificationStatus,
    WorkflowState,
)
from swe_orchestrator.orchestrator.workflow.state_machine import RunStatus

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_DUPLICATE = 3
EXIT_VERIFICATION_FAILED = 4


class _InlineStarter:
    """Starts runs in the calling thread so the CLI waits for them."""

    def __init__(self, launcher: RunLauncher) -> None:
        self._launcher = launcher

    def start(self, record: RunRecord) -> object:
        return self._launcher.run_inline(record)


def _split_repo(value: str) -> tuple[str, str]:
    owner, sep, repo = value.partition("/")
    if not sep or not owner or not repo or "/" in repo:
        raise argparse.ArgumentTypeError("expected 'owner/repo'")
    return owner, repo


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="swe-orchestrator",
        description="Workflow orchestrator for automated test verification runs",
    )
    parser.add_argument("--version", action="version", version=f"swe-orchestrator {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    verify = subparsers.add_parser(
        "verify", help="Run the verification workflow inline against a local working tree"
    )
    verify.add_argument(
        "--repo",
        "--repository",
        dest="repository",
        type=_split_repo,
        required=True,
        help="Repository in the form 'owner/repo'",
    )
    verify.add_argument("--branch", required=True, help="Branch holding the change under test")
    verify.add_argument(
        "--changed-file",
        dest="changed_files",
        action="append",
        default=[],
        help="Path of a changed file (repeatable)",
    )
    verify.add_argument("--request", required=True, help="What the change is supposed to do")
    verify.add_argument(
        "--task",
        dest="tasks",
        action="append",
        default=[],
        help="A pending implementation task (repeatable)",
    )
    verify.add_argument(
        "--completed-task",
        dest="completed_tasks",
        action="append",
        default=[],
        help="A completed implementation task (repeatable)",
    )
    verify.add_argument(
        "--issue-number",
        type=int,
        default=None,
        help="Register the run under this issue (enables duplicate detection)",
    )
    verify.add_argument(
        "--workdir",
        type=Path,
        default=None,
        help="Working tree actions run in (defaults to ORCHESTRATOR_SANDBOX_ROOT)",
    )

    trigger = subparsers.add_parser(
        "trigger", help="Feed a webhook payload through the trigger handlers"
    )
    trigger.add_argument(
        "--event",
        required=True,
        help="Event name, e.g. 'issues' or 'issues.labeled'",
    )
    trigger.add_argument("--payload", type=Path, required=True, help="Path to a JSON payload")

    runs = subparsers.add_parser("runs", help="Inspect registered runs")
    runs_sub = runs.add_subparsers(dest="runs_command", required=True)
    show = runs_sub.add_parser("show", help="Show one run")
    show.add_argument("--key", required=True, help="Run key, e.g. 'owner/repo/42'")
    list_runs = runs_sub.add_parser("list", help="List the runs of a repository")
    list_runs.add_argument(
        "--repo", "--repository", dest="repository", type=_split_repo, required=True
    )

    serve = subparsers.add_parser("serve", help="Start the webhook server")
    serve.add_argument("--host", default=None, help="Bind address (defaults to ORCHESTRATOR_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Port (defaults to ORCHESTRATOR_PORT)")

    return parser


def _print_record(record: RunRecord) -> None:
    print(json.dumps(record.model_dump(mode="json"), indent=2, sort_keys=True))


def _verify(args: argparse.Namespace, settings: OrchestratorSettings) -> int:
    owner, repo = args.repository
    updates: dict[str, object] = {"local_mode": True}
    if args.workdir is not None:
        updates["sandbox_root"] = args.workdir
    settings = settings.model_copy(update=updates)

    plan_items = [PlanItem(description=task, completed=True) for task in args.completed_tasks]
    plan_items += [PlanItem(description=task) for task in args.tasks]
    status = VerificationStatus.NOT_STARTED
    # Without a task plan there is nothing to skip on.
    if plan_items:
        decision = decide_verification(status, plan_items)
        if not decision.run_verification:
            print(f"Verification {decision.status.value}")
            return 0

    if args.issue_number is not None:
        registry = build_registry(settings)
        issue_number = args.issue_number
    else:
        # Unscoped runs are not persisted.
        registry = RunRegistry(InMemoryKeyValueStore())
        issue_number = 0

    record = RunRecord(
        key=create_key(owner, repo, issue_number),
        owner=owner,
        repo=repo,
        issue_number=issue_number,
        issue_title=args.request,
        auto_accept_plan=True,
    )
    result = registry.create(record)
    if not result.created:
        print(
            f"Run already registered for {record.key} (status: {result.record.status.value})",
            file=sys.stderr,
        )
        return EXIT_DUPLICATE

    state = WorkflowState(
        target_repository=TargetRepository(owner=owner, repo=repo),
        branch_name=args.branch,
        issue_number=args.issue_number,
        changed_files=list(args.changed_files),
        sandbox_session_id=record.thread_id,
        conversation=[TranscriptEntry.human(args.request)],
        plan_items=plan_items,
    )
    outcome = build_launcher(settings, registry).run_inline(record, state)

    if outcome.state is not None:
        conclusions = outcome.state.entries_with(Marker.CONCLUSION)
        if conclusions:
            print(conclusions[-1].content)
    if outcome.error is not None:
        print(f"Run failed: {outcome.error}", file=sys.stderr)
        return EXIT_FAILURE
    return 0 if outcome.record.status == RunStatus.COMPLETED else EXIT_VERIFICATION_FAILED


def _trigger(args: argparse.Namespace, settings: OrchestratorSettings) -> int:
    payload = json.loads(args.payload.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Webhook payload must be a JSON object")
    event_type, _, action = args.event.partition(".")
    if action:
        payload.setdefault("action", action)

    registry = build_registry(settings)
    context = HandlerContext(
        settings=settings,
        registry=registry,
        comment_poster=build_comment_poster(
            token=settings.github_token, base_url=settings.github_base_url
        ),
        launcher=_InlineStarter(build_launcher(settings, registry)),
    )
    outcome = default_handlers().handle(context, TriggerEvent(type=event_type, payload=payload))
    print(json.dumps({"status": outcome.status, "key": outcome.key, "run_id": outcome.run_id}))

    if outcome.status == "created" and outcome.key is not None:
        final = registry.get(outcome.key)
        if final is not None and final.status != RunStatus.COMPLETED:
            return EXIT_VERIFICATION_FAILED
    return 0


def _runs(args: argparse.Namespace, settings: OrchestratorSettings) -> int:
    registry = build_registry(settings)
    if args.runs_command == "show":
        record = registry.get(args.key)
        if record is None:
            print(f"No run registered for {args.key}", file=sys.stderr)
            return EXIT_FAILURE
        _print_record(record)
        return 0

    owner, repo = args.repository
    for record in registry.list_by_repository(owner, repo):
        print(f"{record.key}\t{record.status.value}\t{record.run_id}\t{record.created_at}")
    return 0


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    from swe_orchestrator.server.config import ServerSettings

    server_settings = ServerSettings()
    uvicorn.run(
        "swe_orchestrator.server.app:create_app",
        factory=True,
        host=args.host or server_settings.host,
        port=args.port or server_settings.port,
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = OrchestratorSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_logging(settings.log_level, fmt=settings.log_format)

    try:
        if args.command == "verify":
            return _verify(args, settings)
        if args.command == "trigger":
            return _trigger(args, settings)
        if args.command == "runs":
            return _runs(args, settings)
        if args.command == "serve":
            return _serve(args)

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_CONFIG_ERROR

    except ValidationError as e:
        print("Configuration error:", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_CONFIG_ERROR

    except Exception:
        logger.exception("Command failed")
        return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
