"""Trigger handling.

Handlers are plain functions registered by event kind. Each receives a
`HandlerContext` (the only collaborators a handler may touch) and the
`TriggerEvent`, and returns a `TriggerOutcome`.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Literal, Protocol

from swe_orchestrator.orchestrator.config import OrchestratorSettings
from swe_orchestrator.orchestrator.github.client import CommentPoster
from swe_orchestrator.orchestrator.runs.registry import RunRecord, RunRegistry, create_key
from swe_orchestrator.orchestrator.workflow.events import TriggerEvent
from swe_orchestrator.orchestrator.workflow.state_machine import IllegalTransitionError, RunStatus, is_terminal

TRIGGERED_COMMENT = "🤖 The SWE orchestrator has been triggered for this issue. Processing..."

CLARIFY_COMMENT = """### 🤔 Please Clarify Your Response

Your comment wasn't clear about whether you want to proceed with the proposed plan or not.

Please respond with one of these options:
- **"accept"** or **"approve"** - to proceed with the plan
- **"ignore"** or **"reject"** - to decline/close this issue

I'll wait for your clear response before taking any action."""

OutcomeStatus = Literal["created", "duplicate", "ignored", "approved", "rejected", "clarify"]
CommentIntent = Literal["approve", "reject", "clarify"]


class RunStarter(Protocol):
    def start(self, record: RunRecord) -> object: ...


@dataclass(frozen=True, slots=True)
class HandlerContext:
    settings: OrchestratorSettings
    registry: RunRegistry
    comment_poster: CommentPoster
    launcher: RunStarter
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))


@dataclass(frozen=True, slots=True)
class TriggerOutcome:
    status: OutcomeStatus
    key: str | None = None
    run_id: str | None = None
    message: str = ""


Handler = Callable[[HandlerContext, TriggerEvent], TriggerOutcome]


class HandlerRegistry:
    def __init__(self, handlers: dict[str, Handler] | None = None) -> None:
        self._handlers: dict[str, Handler] = {}
        for kind, handler in (handlers or {}).items():
            self.register(kind, handler)

    def register(self, kind: str, handler: Handler) -> None:
        if kind in self._handlers:
            raise ValueError(f"Handler already registered for {kind!r}")
        self._handlers[kind] = handler

    def kinds(self) -> list[str]:
        return sorted(self._handlers)

    def handle(self, context: HandlerContext, event: TriggerEvent) -> TriggerOutcome:
        handler = self._handlers.get(event.kind)
        if handler is None:
            context.logger.debug("No handler for event", extra={"kind": event.kind})
            return TriggerOutcome(status="ignored", message=f"Unhandled event: {event.kind}")
        return handler(context, event)


_APPROVE_WORDS = (
    "approve", "accept", "lgtm", "go ahead", "proceed", "continue", "yes",
    "good", "fine", "ok", "okay", "sounds good", "let's do it", "i agree", "that works",
)
_APPROVE_SYMBOLS = ("👍", "+1")
_REJECT_WORDS = (
    "reject", "no", "disagree", "don't", "stop", "cancel", "decline", "abort",
    "ignore", "not good", "i don't want",
)
_REJECT_SYMBOLS = ("👎", "-1")
_CLARIFY_WORDS = ("what", "how", "why", "when", "where", "can you", "could you", "please change", "modify")


def _contains_word(text: str, words: Iterable[str]) -> bool:
    return any(re.search(rf"(?<![\w']){re.escape(word)}(?![\w'])", text) for word in words)


def classify_comment(body: str) -> CommentIntent:
    """Classify a reply to a proposed plan by keyword analysis.

    Approval wins over rejection, and both win over questions. A comment with
    no recognised keyword counts as approval.
    """

    text = body.lower().strip()
    if text == "y" or _contains_word(text, _APPROVE_WORDS) or any(s in text for s in _APPROVE_SYMBOLS):
        return "approve"
    if text == "n" or _contains_word(text, _REJECT_WORDS) or any(s in text for s in _REJECT_SYMBOLS):
        return "reject"
    if _contains_word(text, _CLARIFY_WORDS) or "?" in text:
        return "clarify"
    return "approve"


def _issue_key(event: TriggerEvent) -> tuple[str, str, int] | None:
    repository = event.repository
    number = event.issue_number
    if repository is None or number is None:
        return None
    owner, repo = repository
    return owner, repo, number


def handle_issue_labeled(context: HandlerContext, event: TriggerEvent) -> TriggerOutcome:
    label = event.label_name
    if label not in context.settings.parsed_trigger_labels():
        return TriggerOutcome(status="ignored", message=f"Label {label!r} does not trigger runs")

    scope = _issue_key(event)
    if scope is None:
        raise ValueError("issues.labeled payload is missing the repository or issue number")
    owner, repo, number = scope
    key = create_key(owner, repo, number)

    existing = context.registry.get(key)
    if existing is not None:
        context.logger.info(
            "Duplicate trigger ignored",
            extra={"key": key, "run_id": existing.run_id, "status": existing.status.value},
        )
        return TriggerOutcome(status="duplicate", key=key, run_id=existing.run_id)

    result = context.registry.create(
        RunRecord(
            key=key,
            owner=owner,
            repo=repo,
            issue_number=number,
            issue_title=event.issue_title,
            auto_accept_plan=label in context.settings.parsed_auto_accept_labels(),
        )
    )
    if not result.created:
        # Another trigger registered the same scope between get and create.
        context.logger.info("Duplicate trigger ignored", extra={"key": key, "run_id": result.record.run_id})
        return TriggerOutcome(status="duplicate", key=key, run_id=result.record.run_id)

    record = result.record
    try:
        context.launcher.start(record)
        context.comment_poster.post_comment(owner=owner, repo=repo, issue_number=number, body=TRIGGERED_COMMENT)
    except Exception:
        context.logger.exception("Failed to start run", extra={"key": key, "run_id": record.run_id})
        _mark_failed(context, key)
        raise

    return TriggerOutcome(status="created", key=key, run_id=record.run_id)


def _mark_failed(context: HandlerContext, key: str) -> None:
    current = context.registry.get(key)
    if current is None or current.status == RunStatus.FAILED:
        return
    try:
        context.registry.update_status(key, RunStatus.FAILED)
    except (IllegalTransitionError, KeyError):
        context.logger.exception("Failed to update run status to failed", extra={"key": key})


def handle_issue_comment_created(context: HandlerContext, event: TriggerEvent) -> TriggerOutcome:
    if event.sender_is_bot:
        return TriggerOutcome(status="ignored", message="Comment from a bot")
    if event.is_pull_request:
        return TriggerOutcome(status="ignored", message="Comment on a pull request")

    scope = _issue_key(event)
    if scope is None:
        return TriggerOutcome(status="ignored", message="Comment without an issue scope")
    owner, repo, number = scope
    key = create_key(owner, repo, number)

    record = context.registry.get(key)
    if record is None:
        return TriggerOutcome(status="ignored", key=key, message="No run for this issue")
    if is_terminal(record.status) or record.status == RunStatus.IMPLEMENTING:
        return TriggerOutcome(
            status="ignored",
            key=key,
            run_id=record.run_id,
            message=f"Run is not awaiting plan feedback (status: {record.status.value})",
        )

    intent = classify_comment(event.comment_body)
    context.logger.info("Plan feedback received", extra={"key": key, "run_id": record.run_id, "intent": intent})

    if intent == "approve":
        updated = context.registry.update_status(key, RunStatus.APPROVED)
        return TriggerOutcome(status="approved", key=key, run_id=updated.run_id)
    if intent == "reject":
        updated = context.registry.update_status(key, RunStatus.INTERRUPTED)
        return TriggerOutcome(status="rejected", key=key, run_id=updated.run_id)

    context.comment_poster.post_comment(owner=owner, repo=repo, issue_number=number, body=CLARIFY_COMMENT)
    return TriggerOutcome(status="clarify", key=key, run_id=record.run_id)


def default_handlers() -> HandlerRegistry:
    return HandlerRegistry(
        {
            "issues.labeled": handle_issue_labeled,
            "issue_comment.created": handle_issue_comment_created,
        }
    )
