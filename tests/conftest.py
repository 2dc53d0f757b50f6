"""Test configuration and fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from swe_orchestrator.orchestrator.config import OrchestratorSettings
from swe_orchestrator.orchestrator.runs.registry import RunRegistry
from swe_orchestrator.orchestrator.runs.stores import InMemoryKeyValueStore
from swe_orchestrator.orchestrator.sandbox.executor import SessionContext
from swe_orchestrator.orchestrator.workflow.state import (
    TargetRepository,
    TranscriptEntry,
    WorkflowState,
)
from tests.fakes import FakeExecutor


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def session() -> SessionContext:
    return SessionContext(session_id="session-1")


@pytest.fixture
def local_session() -> SessionContext:
    return SessionContext(session_id="session-1", local_mode=True)


@pytest.fixture
def base_state() -> WorkflowState:
    return WorkflowState(
        target_repository=TargetRepository(owner="acme", repo="repo"),
        branch_name="feature/login",
        issue_number=42,
        changed_files=["src/login.py"],
        sandbox_session_id="session-1",
        conversation=[TranscriptEntry.human("Add a login form")],
    )


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> OrchestratorSettings:
    monkeypatch.chdir(tmp_path)
    for name in (
        "ORCHESTRATOR_GITHUB_TOKEN",
        "ORCHESTRATOR_RUN_STORE",
        "ORCHESTRATOR_REDIS_URL",
        "ORCHESTRATOR_TRIGGER_LABELS",
        "ORCHESTRATOR_AUTO_ACCEPT_LABELS",
        "ORCHESTRATOR_LOCAL_MODE",
        "AGENT_STATE_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    return OrchestratorSettings(
        _env_file=None,
        AGENT_STATE_PATH=tmp_path / "agent_state",
        ORCHESTRATOR_RUN_STORE="memory",
    )


@pytest.fixture
def registry() -> RunRegistry:
    return RunRegistry(InMemoryKeyValueStore())
