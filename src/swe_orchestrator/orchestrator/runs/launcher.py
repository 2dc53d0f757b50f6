"""Executing registered runs.

`RunLauncher.start` executes a run on a daemon thread (used by the webhook
server); `RunLauncher.run_inline` blocks until the run ends (used by the CLI).
Run status is advanced at workflow milestones by `MilestoneTracker`.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from swe_orchestrator.llm.factory import create_provider
from swe_orchestrator.llm.provider import LLMProvider
from swe_orchestrator.orchestrator.config import OrchestratorSettings
from swe_orchestrator.orchestrator.logging import bind_run_context
from swe_orchestrator.orchestrator.sandbox.executor import (
    LocalSandboxExecutor,
    RemoteSandboxExecutor,
    SandboxExecutor,
)
from swe_orchestrator.orchestrator.tools import build_capabilities
from swe_orchestrator.orchestrator.tools.safety import CommandSafetyFilter
from swe_orchestrator.orchestrator.workflow.dispatcher import ToolDispatcher
from swe_orchestrator.orchestrator.workflow.graph import CompiledWorkflow, RunConfig
from swe_orchestrator.orchestrator.workflow.policy import RetryPolicy, SafetyValve
from swe_orchestrator.orchestrator.workflow.state import (
    Marker,
    TargetRepository,
    TranscriptEntry,
    VerificationStatus,
    WorkflowState,
)
from swe_orchestrator.orchestrator.workflow.state_machine import (
    ALLOWED_TRANSITIONS,
    IllegalTransitionError,
    RunStatus,
)
from swe_orchestrator.orchestrator.workflow.verification import build_verification_graph
from swe_orchestrator.orchestrator.workflow.verification.steps import (
    DIAGNOSE_ERROR,
    GEN_EXECUTION_ACTIONS,
    GEN_WRITING_ACTIONS,
    GENERATE_TEST_PLAN,
    INITIALIZE,
    TAKE_EXECUTION_ACTIONS,
    TAKE_REVIEW_ACTIONS,
    VerificationSteps,
)

from .registry import RunRecord, RunRegistry

logger = logging.getLogger(__name__)

ACTION_STEPS: frozenset[str] = frozenset(
    {
        GEN_WRITING_ACTIONS,
        TAKE_REVIEW_ACTIONS,
        GEN_EXECUTION_ACTIONS,
        TAKE_EXECUTION_ACTIONS,
        DIAGNOSE_ERROR,
    }
)

StateFactory = Callable[[RunRecord], WorkflowState]


class RunInterrupted(RuntimeError):
    """The run's record was moved to `interrupted` while it was executing."""


class PlanApprovalTimeout(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class RunOutcome:
    record: RunRecord
    state: WorkflowState | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.record.status == RunStatus.COMPLETED


def issue_branch_name(issue_number: int) -> str:
    return f"swe-agent/issue-{issue_number}"


def initial_state_for_issue(record: RunRecord) -> WorkflowState:
    """Initial workflow state for a run triggered from an issue."""

    request = f"Issue #{record.issue_number}"
    if record.issue_title:
        request += f": {record.issue_title}"
    return WorkflowState(
        target_repository=TargetRepository(owner=record.owner, repo=record.repo),
        branch_name=issue_branch_name(record.issue_number),
        issue_number=record.issue_number,
        sandbox_session_id=record.thread_id,
        conversation=[TranscriptEntry.human(request)],
    )


class MilestoneTracker:
    """Graph listener that moves the run record through its lifecycle.

    When the plan is not auto-accepted the tracker blocks after
    `generate_test_plan` until the record is approved (for example from an
    issue comment), interrupted, or the approval timeout expires.
    """

    def __init__(
        self,
        registry: RunRegistry,
        record: RunRecord,
        *,
        approval_timeout_seconds: float = 3600.0,
        approval_poll_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._record = record
        self._approval_timeout_seconds = approval_timeout_seconds
        self._approval_poll_seconds = approval_poll_seconds
        self._sleep = sleep
        self._clock = clock

    @property
    def record(self) -> RunRecord:
        return self._record

    def __call__(self, step: str, state: WorkflowState) -> None:
        self._raise_if_interrupted()
        if step == INITIALIZE:
            self.advance(RunStatus.PLANNING)
        elif step == GENERATE_TEST_PLAN:
            self.advance(RunStatus.PLAN_READY)
            last = state.last_entry
            if last is not None and last.has(Marker.ERROR):
                return
            if self._record.auto_accept_plan:
                self.advance(RunStatus.APPROVED)
            else:
                self.wait_for_approval()
        elif step in ACTION_STEPS:
            self.advance(RunStatus.IMPLEMENTING)

    def advance(self, status: RunStatus) -> RunRecord:
        """Move forward to `status`; stages the record already passed are skipped."""

        current = self._refresh()
        if current.status == status or status not in ALLOWED_TRANSITIONS[current.status]:
            logger.debug(
                "Skipping status milestone",
                extra={"key": current.key, "status": current.status.value, "milestone": status.value},
            )
            return current
        self._record = self._registry.update_status(current.key, status)
        return self._record

    def wait_for_approval(self) -> RunRecord:
        deadline = self._clock() + self._approval_timeout_seconds
        logger.info("Waiting for plan approval", extra={"key": self._record.key})
        while True:
            current = self._refresh()
            if current.status == RunStatus.INTERRUPTED:
                raise RunInterrupted(f"Run {current.key} was interrupted")
            if current.status in (RunStatus.APPROVED, RunStatus.IMPLEMENTING):
                logger.info("Plan approved", extra={"key": current.key})
                return current
            if self._clock() >= deadline:
                raise PlanApprovalTimeout(
                    f"Plan for {current.key} was not approved within {self._approval_timeout_seconds}s"
                )
            self._sleep(self._approval_poll_seconds)

    def finish(self, state: WorkflowState) -> RunRecord:
        if state.verification_status == VerificationStatus.COMPLETED:
            return self.advance(RunStatus.COMPLETED)
        return self.advance(RunStatus.FAILED)

    def _refresh(self) -> RunRecord:
        current = self._registry.get(self._record.key)
        if current is None:
            raise KeyError(f"Run record disappeared: {self._record.key}")
        self._record = current
        return current

    def _raise_if_interrupted(self) -> None:
        if self._refresh().status == RunStatus.INTERRUPTED:
            raise RunInterrupted(f"Run {self._record.key} was interrupted")


class RunLauncher:
    def __init__(
        self,
        registry: RunRegistry,
        workflow: CompiledWorkflow,
        *,
        state_factory: StateFactory = initial_state_for_issue,
        approval_timeout_seconds: float = 3600.0,
        approval_poll_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._registry = registry
        self._workflow = workflow
        self._state_factory = state_factory
        self._approval_timeout_seconds = approval_timeout_seconds
        self._approval_poll_seconds = approval_poll_seconds
        self._sleep = sleep

    def start(self, record: RunRecord, initial_state: WorkflowState | None = None) -> threading.Thread:
        thread = threading.Thread(
            target=self.run_inline,
            name=f"run-{record.key}-{record.run_id}",
            daemon=True,
            args=(record, initial_state),
        )
        thread.start()
        logger.info("Run started", extra={"key": record.key, "run_id": record.run_id})
        return thread

    def run_inline(self, record: RunRecord, initial_state: WorkflowState | None = None) -> RunOutcome:
        tracker = MilestoneTracker(
            self._registry,
            record,
            approval_timeout_seconds=self._approval_timeout_seconds,
            approval_poll_seconds=self._approval_poll_seconds,
            sleep=self._sleep,
        )
        config = RunConfig(
            run_id=record.run_id,
            metadata={"key": record.key, "thread_id": record.thread_id},
        )
        with bind_run_context(key=record.key, run_id=record.run_id):
            try:
                state = initial_state if initial_state is not None else self._state_factory(record)
                final_state = self._workflow.run(state, config, listeners=[tracker])
                final_record = tracker.finish(final_state)
            except RunInterrupted:
                logger.info("Run interrupted")
                return RunOutcome(record=tracker.record, error="interrupted")
            except Exception as e:
                logger.exception("Run failed")
                return RunOutcome(record=self._mark_failed(tracker.record), error=str(e))

            logger.info("Run finished", extra={"status": final_record.status.value})
            return RunOutcome(record=final_record, state=final_state)

    def _mark_failed(self, record: RunRecord) -> RunRecord:
        try:
            return self._registry.update_status(record.key, RunStatus.FAILED)
        except (IllegalTransitionError, KeyError):
            logger.warning("Could not mark run as failed", extra={"key": record.key}, exc_info=True)
            return record


def build_executor(settings: OrchestratorSettings) -> SandboxExecutor:
    if settings.local_mode:
        return LocalSandboxExecutor(
            settings.sandbox_root, default_timeout_seconds=settings.command_timeout_seconds
        )
    return RemoteSandboxExecutor(
        settings.sandbox_url, default_timeout_seconds=settings.command_timeout_seconds
    )


def build_verification_workflow(
    settings: OrchestratorSettings,
    *,
    model: LLMProvider | None = None,
    executor: SandboxExecutor | None = None,
) -> CompiledWorkflow:
    """Wire the verification workflow from settings."""

    model = model or create_provider()
    executor = executor or build_executor(settings)
    capabilities = build_capabilities(executor, timeout_seconds=settings.command_timeout_seconds)
    dispatcher = ToolDispatcher(
        capabilities,
        max_output_chars=settings.max_output_chars,
        safety_filter=CommandSafetyFilter(),
    )
    retry_policy = RetryPolicy()
    steps = VerificationSteps(
        model,
        dispatcher,
        capabilities,
        local_mode=settings.local_mode,
        retry_policy=retry_policy,
    )
    return build_verification_graph(
        steps,
        retry_policy=retry_policy,
        safety_valve=SafetyValve(max_actions=settings.max_verification_actions),
    )


def build_launcher(
    settings: OrchestratorSettings,
    registry: RunRegistry,
    *,
    model: LLMProvider | None = None,
    executor: SandboxExecutor | None = None,
) -> RunLauncher:
    return RunLauncher(
        registry,
        build_verification_workflow(settings, model=model, executor=executor),
        approval_timeout_seconds=settings.plan_approval_timeout_seconds,
        approval_poll_seconds=settings.plan_approval_poll_seconds,
    )
