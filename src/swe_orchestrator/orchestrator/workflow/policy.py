"""Routing policy for the verification loop.

Policies are small and explicit and never call the model:

- `aggregate_success` collapses a batch of results into one success signal.
- `RetryPolicy` bounds the diagnose loop.
- `SafetyValve` forces conclusion once a run has produced too many actions.
- `decide_verification` decides whether a finished implementation is verified.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .actions import ActionResult
from .state import EntryOrigin, Marker, PlanItem, VerificationStatus, WorkflowState

logger = logging.getLogger(__name__)

# Content containing any of these (case-insensitive) counts as a failure.
FAILURE_TOKENS: tuple[str, ...] = ("failed", "error", "failing")

CONCLUSION_STEP = "conclusion"

Router = Callable[[WorkflowState], str]


def aggregate_success(results: Iterable[ActionResult]) -> bool:
    """True iff no result errored and no content mentions a failure token.

    The token match is a plain substring test, so output such as "0 errors" or
    "error handling" also counts as a failure.
    """

    for result in results:
        if result.status == "error":
            return False
        lowered = result.content.lower()
        if any(token in lowered for token in FAILURE_TOKENS):
            return False
    return True


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bound on diagnose-and-retry cycles.

    `diagnosis_attempts` already counts the diagnosis that just ran, so the
    number of earlier attempts is one less. With the default ceiling the loop is
    traversed at most three times and the fourth diagnosis concludes.
    """

    max_retries: int = 3

    def prior_attempts(self, state: WorkflowState) -> int:
        return max(state.diagnosis_attempts - 1, 0)

    def should_retry(self, state: WorkflowState) -> bool:
        last = state.last_entry
        produced_diagnosis = last is not None and last.has(Marker.DIAGNOSIS)
        return produced_diagnosis and self.prior_attempts(state) < self.max_retries


@dataclass(frozen=True, slots=True)
class SafetyValve:
    """Overrides routing with conclusion once the run has done too much work."""

    max_actions: int = 20
    multiplier: int = 2
    target: str = CONCLUSION_STEP

    def __post_init__(self) -> None:
        if self.max_actions < 1 or self.multiplier < 1:
            raise ValueError("max_actions and multiplier must be >= 1")

    @property
    def threshold(self) -> int:
        return self.max_actions * self.multiplier

    def count(self, state: WorkflowState) -> int:
        return sum(
            1
            for entry in state.transcript
            if entry.origin in (EntryOrigin.AGENT, EntryOrigin.TOOL_RESULT)
            and not entry.has(Marker.HIDDEN)
        )

    def tripped(self, state: WorkflowState) -> bool:
        return self.count(state) >= self.threshold

    def wrap(self, router: Router) -> Router:
        def guarded(state: WorkflowState) -> str:
            if self.tripped(state):
                logger.info(
                    "Action ceiling reached; routing to conclusion",
                    extra={"count": self.count(state), "threshold": self.threshold},
                )
                return self.target
            return router(state)

        guarded.__name__ = getattr(router, "__name__", "router")
        return guarded


@dataclass(frozen=True, slots=True)
class VerificationDecision:
    run_verification: bool
    status: VerificationStatus


def decide_verification(
    status: VerificationStatus, plan_items: Iterable[PlanItem]
) -> VerificationDecision:
    """Decide whether finished implementation work goes through verification."""

    items = list(plan_items)
    if not any(item.completed for item in items):
        return VerificationDecision(run_verification=False, status=VerificationStatus.SKIPPED)
    if status in (
        VerificationStatus.NOT_STARTED,
        VerificationStatus.REQUIRED,
        VerificationStatus.FAILED,
    ):
        return VerificationDecision(run_verification=True, status=VerificationStatus.IN_PROGRESS)
    return VerificationDecision(run_verification=False, status=status)
