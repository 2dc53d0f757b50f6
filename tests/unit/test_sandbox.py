"""Unit tests for the local and remote sandbox executors."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import Mock

import pytest
import requests

from swe_orchestrator.orchestrator.sandbox.executor import (
    LocalSandboxExecutor,
    RemoteSandboxExecutor,
    SandboxError,
    SandboxPathError,
    SandboxTimeoutError,
    SessionContext,
)


@pytest.fixture
def local(tmp_path: Path) -> LocalSandboxExecutor:
    return LocalSandboxExecutor(tmp_path, default_timeout_seconds=5)


def test_local_runs_commands_in_the_root(local: LocalSandboxExecutor, local_session: SessionContext) -> None:
    (local.root / "marker.txt").write_text("hi", encoding="utf-8")

    result = local.run_command("ls", session=local_session)

    assert result.ok
    assert "marker.txt" in result.output


def test_local_reports_exit_codes_and_stderr(local: LocalSandboxExecutor, local_session: SessionContext) -> None:
    result = local.run_command("echo oops >&2; exit 3", session=local_session)

    assert result.exit_code == 3
    assert "oops" in result.output


def test_local_passes_session_environment(local: LocalSandboxExecutor) -> None:
    session = SessionContext(session_id="s", local_mode=True, env={"GREETING": "hello"})

    result = local.run_command('echo "$GREETING $EXTRA"', session=session, env={"EXTRA": "world"})

    assert result.output.strip() == "hello world"


def test_local_timeout_raises(local: LocalSandboxExecutor, local_session: SessionContext) -> None:
    with pytest.raises(SandboxTimeoutError, match="timed out"):
        local.run_command("sleep 5", session=local_session, timeout=0.2)


def test_local_files_round_trip_inside_root(local: LocalSandboxExecutor, local_session: SessionContext) -> None:
    local.write_file("tests/test_new.py", "def test_x():\n    pass\n", session=local_session)

    assert (local.root / "tests" / "test_new.py").is_file()
    assert local.read_file("tests/test_new.py", session=local_session).startswith("def test_x")
    with pytest.raises(FileNotFoundError):
        local.read_file("missing.py", session=local_session)


@pytest.mark.parametrize("path", ["../escape.txt", "/etc/passwd"])
def test_local_paths_are_confined_to_root(
    local: LocalSandboxExecutor, local_session: SessionContext, path: str
) -> None:
    with pytest.raises(SandboxPathError):
        local.write_file(path, "x", session=local_session)


def test_local_root_must_exist(tmp_path: Path) -> None:
    with pytest.raises(NotADirectoryError):
        LocalSandboxExecutor(tmp_path / "nope")


def _response(status_code: int = 200, payload: dict[str, object] | None = None) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    return response


def test_remote_posts_commands_to_the_session(session: SessionContext) -> None:
    http = Mock()
    http.post.return_value = _response(payload={"output": "2 passed", "exit_code": 0})
    executor = RemoteSandboxExecutor("https://sandbox.test/", session=http)

    result = executor.run_command("pytest", session=session, timeout=30)

    assert result.output == "2 passed"
    assert result.exit_code == 0
    url = http.post.call_args.args[0]
    assert url == "https://sandbox.test/sessions/session-1/commands"
    assert http.post.call_args.kwargs["json"]["timeout"] == 30


def test_remote_timeouts(session: SessionContext) -> None:
    http = Mock()
    http.post.return_value = _response(status_code=408)
    executor = RemoteSandboxExecutor("https://sandbox.test", session=http)

    with pytest.raises(SandboxTimeoutError):
        executor.run_command("sleep 999", session=session)

    http.post.side_effect = requests.Timeout()
    with pytest.raises(SandboxTimeoutError):
        executor.run_command("sleep 999", session=session)


def test_remote_connection_failure_is_a_sandbox_error(session: SessionContext) -> None:
    http = Mock()
    http.post.side_effect = requests.ConnectionError("refused")
    executor = RemoteSandboxExecutor("https://sandbox.test", session=http)

    with pytest.raises(SandboxError, match="refused"):
        executor.run_command("ls", session=session)


def test_remote_requires_a_session_id() -> None:
    executor = RemoteSandboxExecutor("https://sandbox.test", session=Mock())

    with pytest.raises(SandboxError, match="session id"):
        executor.run_command("ls", session=SessionContext(session_id=""))


def test_remote_missing_file(session: SessionContext) -> None:
    http = Mock()
    http.get.return_value = _response(status_code=404)
    executor = RemoteSandboxExecutor("https://sandbox.test", session=http)

    with pytest.raises(FileNotFoundError):
        executor.read_file("nope.py", session=session)
