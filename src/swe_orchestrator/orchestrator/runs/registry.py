"""Idempotent run registration.

A run is identified by a deterministic key derived from the external trigger's
scope (``owner/repo/issue_number``). `RunRegistry.create` relies on the store's
atomic create-if-absent, so two concurrent triggers for the same scope produce
exactly one record.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from swe_orchestrator.orchestrator.config import OrchestratorSettings
from swe_orchestrator.orchestrator.workflow.state_machine import RunStatus, transition
from .stores import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    StoredValue,
)

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "/"


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


class RunRecord(BaseModel):
    key: str
    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    thread_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    status: RunStatus = RunStatus.CREATED
    created_at: str = Field(default_factory=_utc_iso_now)
    updated_at: str = Field(default_factory=_utc_iso_now)

    owner: str
    repo: str
    issue_number: int
    issue_title: str | None = None
    auto_accept_plan: bool = False
    assistant_id: str = "verification"


@dataclass(frozen=True, slots=True)
class CreateResult:
    created: bool
    record: RunRecord


@dataclass(frozen=True, slots=True)
class RunScope:
    owner: str
    repo: str
    issue_number: int


def create_key(*parts: object) -> str:
    """Build a deterministic run key from scope parts.

    >>> create_key("acme", "repo", 42)
    'acme/repo/42'
    """

    if not parts:
        raise ValueError("A run key needs at least one scope part")
    rendered = [str(part).strip() for part in parts]
    if any(not part for part in rendered):
        raise ValueError(f"Run key parts must be non-empty: {parts!r}")
    return KEY_SEPARATOR.join(rendered)


def parse_key(key: str) -> RunScope:
    parts = key.split(KEY_SEPARATOR)
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"Invalid run key (expected owner/repo/issue): {key!r}")
    owner, repo, issue_raw = parts
    try:
        issue_number = int(issue_raw)
    except ValueError as e:
        raise ValueError(f"Invalid issue number in run key: {key!r}") from e
    return RunScope(owner=owner, repo=repo, issue_number=issue_number)


class RunRegistry:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def get(self, key: str) -> RunRecord | None:
        raw = self._store.get(key)
        if raw is None:
            return None
        return RunRecord.model_validate(raw)

    def create(self, record: RunRecord) -> CreateResult:
        """Register `record` unless a record for the same key already exists."""

        written = self._store.put_if_absent(record.key, record.model_dump(mode="json"))
        if written:
            logger.info(
                "Run registered",
                extra={"key": record.key, "run_id": record.run_id, "thread_id": record.thread_id},
            )
            return CreateResult(created=True, record=record)

        existing = self.get(record.key)
        if existing is None:
            # put_if_absent refused the write, so the key exists.
            raise RuntimeError(f"Run store reported an existing record that cannot be read: {record.key}")
        logger.info(
            "Run already registered; not creating a duplicate",
            extra={"key": record.key, "run_id": existing.run_id},
        )
        return CreateResult(created=False, record=existing)

    def update_status(self, key: str, status: RunStatus) -> RunRecord:
        def _apply(raw: StoredValue) -> StoredValue:
            current = RunRecord.model_validate(raw)
            new_status = transition(current=current.status, to=status)
            if new_status == current.status:
                return raw
            updated = current.model_copy(update={"status": new_status, "updated_at": _utc_iso_now()})
            return updated.model_dump(mode="json")

        record = RunRecord.model_validate(self._store.update(key, _apply))
        logger.info(
            "Run status updated",
            extra={"key": key, "run_id": record.run_id, "status": record.status.value},
        )
        return record

    def list_by_repository(self, owner: str, repo: str) -> list[RunRecord]:
        records = [RunRecord.model_validate(raw) for raw in self._store.values()]
        matching = [r for r in records if r.owner == owner and r.repo == repo]
        return sorted(matching, key=lambda r: r.created_at)


def build_store(settings: OrchestratorSettings) -> KeyValueStore:
    if settings.run_store == "memory":
        return InMemoryKeyValueStore()
    if settings.run_store == "redis":
        return RedisKeyValueStore(settings.redis_url)
    return JsonFileKeyValueStore(settings.runs_state_file)


def build_registry(settings: OrchestratorSettings) -> RunRegistry:
    return RunRegistry(build_store(settings))
