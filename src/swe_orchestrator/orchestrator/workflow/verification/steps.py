"""Phase steps of the verification workflow.

Each step reads the shared state, may call the model or dispatch actions, and
returns a directive for the engine. Routing between steps lives in
`routing.py`; only `initialize` and `conclusion` choose their successor
themselves.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from swe_orchestrator.llm.profiles import select_profile
from swe_orchestrator.llm.provider import LLMProvider, ModelResponse
from swe_orchestrator.orchestrator.sandbox.executor import SessionContext
from swe_orchestrator.orchestrator.tools import EXECUTION_TOOLS, WRITING_TOOLS
from swe_orchestrator.orchestrator.tools.base import CapabilityRegistry
from swe_orchestrator.orchestrator.workflow.dispatcher import ToolDispatcher
from swe_orchestrator.orchestrator.workflow.graph import Continue, Patch, RunConfig, Terminal
from swe_orchestrator.orchestrator.workflow.policy import RetryPolicy
from swe_orchestrator.orchestrator.workflow.state import EntryOrigin, Marker, TranscriptEntry, VerificationStatus, WorkflowState
from . import prompts

logger = logging.getLogger(__name__)

INITIALIZE = "initialize"
GENERATE_TEST_PLAN = "generate_test_plan"
GEN_WRITING_ACTIONS = "gen_writing_actions"
TAKE_REVIEW_ACTIONS = "take_review_actions"
GEN_EXECUTION_ACTIONS = "gen_execution_actions"
TAKE_EXECUTION_ACTIONS = "take_execution_actions"
DIAGNOSE_ERROR = "diagnose_error"
CONCLUSION = "conclusion"

STEP_ORDER: tuple[str, ...] = (
    INITIALIZE,
    GENERATE_TEST_PLAN,
    GEN_WRITING_ACTIONS,
    TAKE_REVIEW_ACTIONS,
    GEN_EXECUTION_ACTIONS,
    TAKE_EXECUTION_ACTIONS,
    DIAGNOSE_ERROR,
    CONCLUSION,
)

RECENT_WINDOW = 5


@dataclass(frozen=True, slots=True)
class VerificationSummary:
    tests_created: int
    tests_executed: int
    errors: int
    final_status: VerificationStatus


def summarize(state: WorkflowState) -> VerificationSummary:
    created = sum(
        1
        for entry in state.transcript
        if entry.origin == EntryOrigin.AGENT and entry.has(Marker.WRITING_TESTS)
    )
    executed = sum(
        1
        for entry in state.transcript
        if entry.origin == EntryOrigin.AGENT and entry.has(Marker.TEST_EXECUTION)
    )
    errors = len(state.entries_with(Marker.ERROR))
    return VerificationSummary(
        tests_created=created,
        tests_executed=executed,
        errors=errors,
        final_status=final_status(state, tests_created=created),
    )


def final_status(state: WorkflowState, *, tests_created: int) -> VerificationStatus:
    """A run that never produced a test-writing batch fails whatever it executed."""

    if tests_created == 0:
        return VerificationStatus.FAILED
    if state.tests_successful:
        return VerificationStatus.COMPLETED
    return VerificationStatus.FAILED


def _tick(count: int) -> str:
    return "✅" if count > 0 else "❌"


def build_conclusion_report(state: WorkflowState, summary: VerificationSummary) -> str:
    lines = [
        "🧪 **Verification - Final Report**",
        "",
        "## Session Summary",
        "",
        f"**Repository:** {state.target_repository.full_name}",
        f"**Branch:** {state.branch_name}",
        f"**Total Actions:** {state.action_count}",
        f"**Changed Files:** {len(state.changed_files)}",
        "",
        "## Results Overview",
        "",
        f"- **Tests Created:** {_tick(summary.tests_created)} {summary.tests_created} test generation cycles",
        f"- **Tests Executed:** {_tick(summary.tests_executed)} {summary.tests_executed} execution attempts",
        f"- **Overall Status:** {'✅ PASSED' if state.tests_successful else '❌ ISSUES FOUND'}",
        f"- **Errors Encountered:** {summary.errors}",
        "",
        "## Summary",
        "",
    ]
    if state.tests_successful:
        lines += [
            "✅ **Testing completed successfully!**",
            "",
            "The tests written for this change ran without failures.",
        ]
    elif summary.tests_created > 0:
        lines += [
            "⚠️ **Testing completed with issues**",
            "",
            "Tests were created, but some failed or could not be run.",
            "",
            "**Recommendations:**",
            "- Review the failing tests and fix the underlying issues",
            "- Check test configuration and dependencies",
        ]
    else:
        lines += [
            "❌ **Testing could not be completed**",
            "",
            "No tests could be created or executed for this change.",
            "",
            "**Recommendations:**",
            "- Manual testing is strongly recommended",
            "- Review the environment and dependency setup",
        ]
    if state.changed_files:
        lines += ["", "## Changed Files Tested"]
        lines += [f"- {path}" for path in state.changed_files]
    return "\n".join(lines)


class VerificationSteps:
    """The verification phase steps, bound to their collaborators."""

    def __init__(
        self,
        model: LLMProvider,
        dispatcher: ToolDispatcher,
        capabilities: CapabilityRegistry,
        *,
        local_mode: bool = False,
        workdir: str = ".",
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._model = model
        self._dispatcher = dispatcher
        self._capabilities = capabilities
        self._local_mode = local_mode
        self._workdir = workdir
        self._retry_policy = retry_policy or RetryPolicy()
        self._profile = select_profile(model.model_name)

    def handlers(self) -> dict[str, Any]:
        return {
            INITIALIZE: self.initialize,
            GENERATE_TEST_PLAN: self.generate_test_plan,
            GEN_WRITING_ACTIONS: self.gen_writing_actions,
            TAKE_REVIEW_ACTIONS: self.take_review_actions,
            GEN_EXECUTION_ACTIONS: self.gen_execution_actions,
            TAKE_EXECUTION_ACTIONS: self.take_execution_actions,
            DIAGNOSE_ERROR: self.diagnose_error,
            CONCLUSION: self.conclusion,
        }

    def session_for(self, state: WorkflowState) -> SessionContext:
        return SessionContext(
            session_id=state.sandbox_session_id,
            local_mode=self._local_mode,
            workdir=self._workdir,
        )

    def _invoke(self, state: WorkflowState, system: str, tools: Iterable[str] | None) -> ModelResponse:
        messages = self._profile.build(
            system=system,
            user=prompts.format_conversation(state),
            history=prompts.transcript_messages(state.transcript),
        )
        specs = self._capabilities.specs(tools) if tools is not None else None
        return self._model.invoke(messages, specs)

    def initialize(self, state: WorkflowState, config: RunConfig) -> Continue:
        logger.info(
            "Initializing verification",
            extra={
                "run_id": config.run_id,
                "changed_files": len(state.changed_files),
                "plan_items": len(state.plan_items),
            },
        )
        entry = TranscriptEntry.agent(
            "🧪 **Verification started**\n\n"
            f"- Repository: {state.target_repository.full_name}\n"
            f"- Branch: {state.branch_name}\n"
            f"- Changed files: {len(state.changed_files)}\n"
            f"- Task plan items: {len(state.plan_items)}"
        )
        return Continue(
            GENERATE_TEST_PLAN,
            {
                "transcript": [entry],
                "tests_successful": False,
                "verification_status": VerificationStatus.IN_PROGRESS,
            },
        )

    def generate_test_plan(self, state: WorkflowState, config: RunConfig) -> Patch:
        # Model errors here are not recoverable and abort the run.
        response = self._invoke(
            state, prompts.TEST_PLAN_PROMPT.format(context=prompts.format_context(state)), None
        )
        if not response.text.strip():
            logger.warning("Model returned an empty test plan", extra={"run_id": config.run_id})
            entry = TranscriptEntry.agent(
                "Test plan generation returned no plan.", markers=[Marker.ERROR]
            )
        else:
            logger.info("Generated test plan", extra={"run_id": config.run_id})
            entry = TranscriptEntry.agent(response.text, markers=[Marker.TEST_PLAN])
        return Patch({"transcript": [entry]})

    def _gen_actions(
        self, state: WorkflowState, system: str, tools: tuple[str, ...], marker: Marker
    ) -> Patch:
        response = self._invoke(state, system, tools)
        requests = response.action_requests
        markers = [marker] if requests else []
        entry = TranscriptEntry.agent(response.text, action_requests=requests, markers=markers)
        return Patch(
            {"transcript": [entry], "action_count": state.action_count + len(requests)}
        )

    def gen_writing_actions(self, state: WorkflowState, config: RunConfig) -> Patch:
        system = prompts.WRITING_PROMPT.format(
            test_plan=prompts.latest_test_plan(state), context=prompts.format_context(state)
        )
        patch = self._gen_actions(state, system, WRITING_TOOLS, Marker.WRITING_TESTS)
        logger.info(
            "Generated writing actions",
            extra={"run_id": config.run_id, "action_count": patch.patch["action_count"]},
        )
        return patch

    def gen_execution_actions(self, state: WorkflowState, config: RunConfig) -> Patch:
        system = prompts.EXECUTION_PROMPT.format(context=prompts.format_context(state))
        patch = self._gen_actions(state, system, EXECUTION_TOOLS, Marker.TEST_EXECUTION)
        logger.info(
            "Generated execution actions",
            extra={"run_id": config.run_id, "action_count": patch.patch["action_count"]},
        )
        return patch

    def _last_request_entry(self, state: WorkflowState) -> TranscriptEntry:
        entry = state.last_agent_entry()
        if entry is None or not entry.action_requests:
            raise ValueError("No pending action requests to dispatch")
        return entry

    def take_review_actions(self, state: WorkflowState, config: RunConfig) -> Patch:
        outcome = self._dispatcher.dispatch(
            self._last_request_entry(state), self.session_for(state), allowed=WRITING_TOOLS
        )
        logger.info(
            "Completed writing actions",
            extra={"run_id": config.run_id, "results": len(outcome.results)},
        )
        return Patch({"transcript": outcome.entries()})

    def take_execution_actions(self, state: WorkflowState, config: RunConfig) -> Patch:
        outcome = self._dispatcher.dispatch(
            self._last_request_entry(state), self.session_for(state), allowed=EXECUTION_TOOLS
        )
        logger.info(
            "Completed execution actions",
            extra={
                "run_id": config.run_id,
                "results": len(outcome.results),
                "tests_successful": outcome.success,
            },
        )
        return Patch({"transcript": outcome.entries(), "tests_successful": outcome.success})

    def diagnose_error(self, state: WorkflowState, config: RunConfig) -> Patch:
        attempts = state.diagnosis_attempts + 1
        retry = self._retry_policy
        recent = state.transcript[-RECENT_WINDOW:]
        results = "\n\n".join(
            entry.content
            for entry in recent
            if entry.origin == EntryOrigin.TOOL_RESULT
        )
        prompt = prompts.DIAGNOSIS_PROMPT.format(
            repository=state.target_repository.full_name,
            branch=state.branch_name,
            attempts=attempts - 1,
            max_retries=retry.max_retries,
            errors=prompts.error_excerpts(recent) or "No specific error messages found",
            results=results or "No test results available",
            closing=(
                "If fixable, suggest specific actions to resolve the issues."
                if attempts - 1 < retry.max_retries
                else "The retry limit has been reached; give a final assessment."
            ),
        )

        patch: dict[str, Any] = {"diagnosis_attempts": attempts}
        try:
            diagnosis = self._model.complete(prompt)
        except Exception as e:
            logger.exception("Failed to diagnose errors", extra={"run_id": config.run_id})
            entry = TranscriptEntry.diagnostic(
                f"❌ **Failed to diagnose errors**\n\nError: {e}\n\nMoving to conclusion.",
                markers=[Marker.ERROR],
            )
        else:
            entry = TranscriptEntry.diagnostic(
                f"🔍 **Error Diagnosis**\n\n{diagnosis}", markers=[Marker.DIAGNOSIS]
            )
        logger.info(
            "Diagnosis finished",
            extra={"run_id": config.run_id, "diagnosis_attempts": attempts},
        )
        patch["transcript"] = [entry]
        return Patch(patch)

    def conclusion(self, state: WorkflowState, config: RunConfig) -> Terminal:
        summary = summarize(state)
        entry = TranscriptEntry.agent(
            build_conclusion_report(state, summary), markers=[Marker.CONCLUSION]
        )
        logger.info(
            "Verification concluded",
            extra={
                "run_id": config.run_id,
                "tests_successful": state.tests_successful,
                "tests_created": summary.tests_created,
                "tests_executed": summary.tests_executed,
                "errors": summary.errors,
                "final_status": summary.final_status.value,
            },
        )
        return Terminal({"transcript": [entry], "verification_status": summary.final_status})
