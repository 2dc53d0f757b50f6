"""Unit tests for idempotent run registration."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from swe_orchestrator.orchestrator.config import OrchestratorSettings
from swe_orchestrator.orchestrator.runs.registry import (
    RunRecord,
    RunRegistry,
    build_registry,
    create_key,
    parse_key,
)
from swe_orchestrator.orchestrator.runs.stores import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
)
from swe_orchestrator.orchestrator.workflow.state_machine import (
    IllegalTransitionError,
    RunStatus,
)


def _record(issue_number: int = 42, **kwargs: object) -> RunRecord:
    return RunRecord(
        key=create_key("acme", "repo", issue_number),
        owner="acme",
        repo="repo",
        issue_number=issue_number,
        **kwargs,  # type: ignore[arg-type]
    )


def test_create_key_is_deterministic() -> None:
    assert create_key("acme", "repo", 42) == "acme/repo/42"
    assert create_key("acme", "repo", 42) == create_key("acme", "repo", "42")


def test_create_key_rejects_empty_parts() -> None:
    with pytest.raises(ValueError):
        create_key()
    with pytest.raises(ValueError):
        create_key("acme", " ", 1)


def test_parse_key_round_trips_scope() -> None:
    scope = parse_key("acme/repo/42")

    assert (scope.owner, scope.repo, scope.issue_number) == ("acme", "repo", 42)
    for bad in ("acme/repo", "acme/repo/x", "acme//1"):
        with pytest.raises(ValueError):
            parse_key(bad)


def test_create_returns_existing_record_for_duplicate_key(registry: RunRegistry) -> None:
    first = registry.create(_record())
    second = registry.create(_record(issue_title="again"))

    assert first.created is True
    assert second.created is False
    assert second.record.run_id == first.record.run_id
    assert second.record.issue_title is None


def test_update_status_follows_the_lifecycle(registry: RunRegistry) -> None:
    record = registry.create(_record()).record

    registry.update_status(record.key, RunStatus.PLANNING)
    updated = registry.update_status(record.key, RunStatus.PLAN_READY)

    assert updated.status == RunStatus.PLAN_READY
    assert registry.get(record.key).status == RunStatus.PLAN_READY  # type: ignore[union-attr]
    with pytest.raises(IllegalTransitionError):
        registry.update_status(record.key, RunStatus.CREATED)


def test_update_status_for_unknown_key_raises(registry: RunRegistry) -> None:
    with pytest.raises(KeyError):
        registry.update_status("acme/repo/1", RunStatus.FAILED)


def test_list_by_repository_filters_and_sorts(registry: RunRegistry) -> None:
    registry.create(_record(1, created_at="2024-01-02T00:00:00+00:00"))
    registry.create(_record(2, created_at="2024-01-01T00:00:00+00:00"))
    registry.create(
        RunRecord(key="other/repo/1", owner="other", repo="repo", issue_number=1)
    )

    runs = registry.list_by_repository("acme", "repo")

    assert [r.issue_number for r in runs] == [2, 1]


@pytest.mark.parametrize("backend", ["memory", "json"])
def test_concurrent_triggers_for_one_issue_create_exactly_one_run(
    backend: str, tmp_path: Path
) -> None:
    store = InMemoryKeyValueStore() if backend == "memory" else JsonFileKeyValueStore(tmp_path / "runs.json")
    registry = RunRegistry(store)
    barrier = threading.Barrier(8, timeout=5)
    results = []
    lock = threading.Lock()

    def trigger() -> None:
        barrier.wait()
        result = registry.create(_record())
        with lock:
            results.append(result)

    threads = [threading.Thread(target=trigger) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(1 for r in results if r.created) == 1
    assert len({r.record.run_id for r in results}) == 1
    assert len(store.values()) == 1


def test_build_registry_uses_configured_store(settings: OrchestratorSettings) -> None:
    json_settings = settings.model_copy(update={"run_store": "json"})

    registry = build_registry(json_settings)
    registry.create(_record())

    assert settings.runs_state_file.exists()
