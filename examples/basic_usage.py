#!/usr/bin/env python3
"""Programmatic verification run example.

This demonstrates using the orchestrator components directly:

* load settings (and the model provider) from `.env`
* register a run in the configured run store
* run the verification workflow against a local working tree
* print the conclusion report

The repository and working tree are passed as arguments (not read from `.env`).
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from swe_orchestrator.orchestrator.config import OrchestratorSettings
from swe_orchestrator.orchestrator.logging import configure_logging
from swe_orchestrator.orchestrator.runs.launcher import build_launcher
from swe_orchestrator.orchestrator.runs.registry import RunRecord, build_registry, create_key
from swe_orchestrator.orchestrator.workflow import (
    Marker,
    TranscriptEntry,
    WorkflowState,
)
from swe_orchestrator.orchestrator.workflow.state import TargetRepository


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify a change (programmatic example).")
    parser.add_argument("--repo", required=True, help='Repository in the form "owner/repo"')
    parser.add_argument("--issue", type=int, required=True, help="Issue the change belongs to")
    parser.add_argument("--branch", required=True, help="Branch holding the change")
    parser.add_argument("--workdir", type=Path, default=Path("."), help="Local working tree")
    parser.add_argument(
        "--changed-files",
        default="",
        help='Comma-separated changed paths, e.g. "src/app.py,src/forms.py" (optional)',
    )
    parser.add_argument("--request", required=True, help="What the change should do")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    owner, repo = args.repo.split("/", 1)
    changed = [path.strip() for path in args.changed_files.split(",") if path.strip()]

    settings = OrchestratorSettings().model_copy(
        update={"local_mode": True, "sandbox_root": args.workdir}
    )
    configure_logging(settings.log_level, fmt=settings.log_format)

    registry = build_registry(settings)
    result = registry.create(
        RunRecord(
            key=create_key(owner, repo, args.issue),
            owner=owner,
            repo=repo,
            issue_number=args.issue,
            issue_title=args.request,
            auto_accept_plan=True,
        )
    )
    if not result.created:
        print(f"Run already registered: {result.record.key} ({result.record.status.value})")
        return 1

    state = WorkflowState(
        target_repository=TargetRepository(owner=owner, repo=repo),
        branch_name=args.branch,
        issue_number=args.issue,
        changed_files=changed,
        sandbox_session_id=result.record.thread_id,
        conversation=[TranscriptEntry.human(args.request)],
    )
    outcome = build_launcher(settings, registry).run_inline(result.record, state)

    if outcome.state is not None:
        for entry in outcome.state.entries_with(Marker.CONCLUSION):
            print(entry.content)
    print(f"Run {outcome.record.key}: {outcome.record.status.value}")
    return 0 if outcome.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
