from __future__ import annotations

from enum import Enum


class RunStatus(str, Enum):
    CREATED = "created"
    PLANNING = "planning"
    PLAN_READY = "plan_ready"
    APPROVED = "approved"
    IMPLEMENTING = "implementing"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


_FORWARD_ORDER: tuple[RunStatus, ...] = (
    RunStatus.CREATED,
    RunStatus.PLANNING,
    RunStatus.PLAN_READY,
    RunStatus.APPROVED,
    RunStatus.IMPLEMENTING,
)

TERMINAL_STATUSES: frozenset[RunStatus] = frozenset(
    {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.INTERRUPTED}
)


def _build_transitions() -> dict[RunStatus, set[RunStatus]]:
    table: dict[RunStatus, set[RunStatus]] = {}
    for index, status in enumerate(_FORWARD_ORDER):
        # Forward moves may skip intermediate stages.
        table[status] = set(_FORWARD_ORDER[index + 1 :]) | set(TERMINAL_STATUSES)
    table[RunStatus.COMPLETED] = {RunStatus.FAILED}
    table[RunStatus.INTERRUPTED] = {RunStatus.FAILED}
    table[RunStatus.FAILED] = set()
    return table


ALLOWED_TRANSITIONS: dict[RunStatus, set[RunStatus]] = _build_transitions()


class IllegalTransitionError(ValueError):
    pass


def is_terminal(status: RunStatus) -> bool:
    return status in TERMINAL_STATUSES


def transition(*, current: RunStatus, to: RunStatus) -> RunStatus:
    """Validate a run status change and return the new status.

    Setting the current status again is a no-op.
    """

    if current == to:
        return current
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to
