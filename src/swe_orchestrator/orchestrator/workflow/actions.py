from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

ActionStatus = Literal["success", "error"]


@dataclass(frozen=True, slots=True)
class ActionRequest:
    """A single unit of externally executed work requested by the model.

    `id` is unique within the batch it was produced in; results are matched back
    to requests by this id.
    """

    id: str
    name: str
    arguments: dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ActionResult:
    """The outcome of one ActionRequest."""

    request_id: str
    name: str
    status: ActionStatus
    content: str
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.status == "success"


def unknown_action_result(request: ActionRequest) -> ActionResult:
    return ActionResult(
        request_id=request.id,
        name=request.name,
        status="error",
        content=f"Unknown tool: {request.name}",
    )


def ensure_unique_ids(requests: list[ActionRequest]) -> None:
    """Fail loudly when a batch reuses a request id."""

    seen: set[str] = set()
    for request in requests:
        if request.id in seen:
            raise ValueError(f"Duplicate action request id in batch: {request.id!r}")
        seen.add(request.id)
