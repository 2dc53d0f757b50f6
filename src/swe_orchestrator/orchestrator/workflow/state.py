"""Shared mutable state of a workflow run.

The state itself is an immutable pydantic model; steps return patches and the
engine produces the next state with :meth:`WorkflowState.apply`. Patches follow
a small set of reducer rules:

- transcript fields are appended to; an entry reusing an existing id (a request
  batch rewritten by the safety filter) replaces that entry in place
- counters may only grow
- every other field is replaced
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .actions import ActionRequest, ActionResult


class EntryOrigin(str, Enum):
    AGENT = "agent"
    TOOL_RESULT = "tool_result"
    DIAGNOSTIC = "diagnostic"
    HUMAN = "human"


class Marker(str, Enum):
    ERROR = "error"
    DIAGNOSIS = "diagnosis"
    TEST_PLAN = "test_plan"
    WRITING_TESTS = "writing_tests"
    TEST_EXECUTION = "test_execution"
    CONCLUSION = "conclusion"
    HIDDEN = "hidden"


class VerificationStatus(str, Enum):
    NOT_STARTED = "not_started"
    REQUIRED = "required"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class TranscriptEntry(BaseModel):
    """One entry of a run transcript."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    origin: EntryOrigin
    content: str = ""
    action_requests: list[ActionRequest] = Field(default_factory=list)
    result: ActionResult | None = None
    markers: frozenset[Marker] = Field(default_factory=frozenset)

    def has(self, marker: Marker) -> bool:
        return marker in self.markers

    @property
    def has_action_requests(self) -> bool:
        return self.origin == EntryOrigin.AGENT and bool(self.action_requests)

    @classmethod
    def agent(
        cls,
        content: str,
        *,
        action_requests: Iterable[ActionRequest] = (),
        markers: Iterable[Marker] = (),
    ) -> TranscriptEntry:
        return cls(
            origin=EntryOrigin.AGENT,
            content=content,
            action_requests=list(action_requests),
            markers=frozenset(markers),
        )

    @classmethod
    def diagnostic(cls, content: str, *, markers: Iterable[Marker] = ()) -> TranscriptEntry:
        return cls(origin=EntryOrigin.DIAGNOSTIC, content=content, markers=frozenset(markers))

    @classmethod
    def human(cls, content: str) -> TranscriptEntry:
        return cls(origin=EntryOrigin.HUMAN, content=content)

    @classmethod
    def from_result(cls, result: ActionResult, *, markers: Iterable[Marker] = ()) -> TranscriptEntry:
        tags = set(markers)
        if result.status == "error":
            tags.add(Marker.ERROR)
        return cls(
            origin=EntryOrigin.TOOL_RESULT,
            content=result.content,
            result=result,
            markers=frozenset(tags),
        )


class TargetRepository(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class PlanItem(BaseModel):
    description: str
    completed: bool = False
    summary: str | None = None


_APPEND_FIELDS: frozenset[str] = frozenset({"transcript", "conversation"})
_MONOTONIC_FIELDS: frozenset[str] = frozenset({"action_count", "diagnosis_attempts"})


def merge_entries(
    current: Iterable[TranscriptEntry], new: Iterable[TranscriptEntry]
) -> list[TranscriptEntry]:
    """Append `new` to `current`; an entry whose id is already present replaces it in place."""

    merged = list(current)
    index = {entry.id: position for position, entry in enumerate(merged)}
    for entry in new:
        if entry.id in index:
            merged[index[entry.id]] = entry
        else:
            index[entry.id] = len(merged)
            merged.append(entry)
    return merged


class WorkflowState(BaseModel):
    """State shared by every step of a verification run."""

    model_config = ConfigDict(frozen=True)

    transcript: list[TranscriptEntry] = Field(default_factory=list)
    conversation: list[TranscriptEntry] = Field(default_factory=list)

    action_count: int = Field(default=0, ge=0)
    diagnosis_attempts: int = Field(default=0, ge=0)
    tests_successful: bool | None = None
    verification_status: VerificationStatus = VerificationStatus.NOT_STARTED

    target_repository: TargetRepository
    branch_name: str
    issue_number: int | None = None
    changed_files: list[str] = Field(default_factory=list)
    sandbox_session_id: str = ""
    codebase_tree: str | None = None
    dependencies_installed: bool = False
    plan_items: list[PlanItem] = Field(default_factory=list)

    def apply(self, patch: Mapping[str, Any]) -> WorkflowState:
        if not patch:
            return self

        updates: dict[str, Any] = {}
        for name, value in patch.items():
            if name not in WorkflowState.model_fields:
                raise ValueError(f"Unknown state field in patch: {name!r}")
            if name in _APPEND_FIELDS:
                updates[name] = merge_entries(getattr(self, name), value)
            elif name in _MONOTONIC_FIELDS:
                current = getattr(self, name)
                if value < current:
                    raise ValueError(f"Counter {name!r} may not decrease ({current} -> {value})")
                updates[name] = value
            else:
                updates[name] = value

        # Re-validate so enum/str coercion applies to patched values too.
        merged = {**self.model_dump(), **updates}
        return WorkflowState.model_validate(merged)

    @property
    def last_entry(self) -> TranscriptEntry | None:
        return self.transcript[-1] if self.transcript else None

    def last_agent_entry(self) -> TranscriptEntry | None:
        for entry in reversed(self.transcript):
            if entry.origin == EntryOrigin.AGENT:
                return entry
        return None

    def entries_with(self, marker: Marker) -> list[TranscriptEntry]:
        return [entry for entry in self.transcript if entry.has(marker)]
