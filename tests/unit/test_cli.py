"""Unit tests for the command line entrypoint."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from swe_orchestrator.llm.provider import ModelResponse
from swe_orchestrator.orchestrator import main as cli
from swe_orchestrator.orchestrator.config import OrchestratorSettings
from swe_orchestrator.orchestrator.runs.launcher import RunLauncher, build_verification_workflow
from swe_orchestrator.orchestrator.runs.registry import RunRecord, RunRegistry, build_registry
from swe_orchestrator.orchestrator.sandbox.executor import CommandResult
from tests.fakes import FakeExecutor, ScriptedModel, shell_request, write_test_request

PLAN = ModelResponse(text="1. Run the suite")
RUN_TESTS = ModelResponse(text="", action_requests=[shell_request("x1", "pytest -q")])
NOTHING = ModelResponse(text="Nothing to do.")
WRITE_TEST = ModelResponse(text="", action_requests=[write_test_request("w1")])
PASSING_SCRIPT = {"plan": [PLAN], "writing": [WRITE_TEST, NOTHING], "execution": [RUN_TESTS, NOTHING]}


@pytest.fixture(autouse=True)
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for name in ("ORCHESTRATOR_REDIS_URL", "ORCHESTRATOR_GITHUB_TOKEN", "ORCHESTRATOR_TRIGGER_LABELS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ORCHESTRATOR_RUN_STORE", "json")
    monkeypatch.setenv("AGENT_STATE_PATH", str(tmp_path / "agent_state"))
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
    return tmp_path


def _use_scripted_launcher(monkeypatch: pytest.MonkeyPatch, script: dict[str, list], output: str = "3 passed") -> None:
    def build_launcher(settings: OrchestratorSettings, registry: RunRegistry) -> RunLauncher:
        executor = FakeExecutor(lambda command: CommandResult(output=output, exit_code=0))
        workflow = build_verification_workflow(settings, model=ScriptedModel(script), executor=executor)
        return RunLauncher(registry, workflow)

    monkeypatch.setattr(cli, "build_launcher", build_launcher)


def _registry() -> RunRegistry:
    return build_registry(OrchestratorSettings(_env_file=None))


def _verify_args(*extra: str) -> list[str]:
    return [
        "verify",
        "--repo",
        "acme/repo",
        "--branch",
        "feature/login",
        "--changed-file",
        "src/login.py",
        "--request",
        "Add a login form",
        *extra,
    ]


def test_verify_prints_the_report_and_succeeds(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _use_scripted_launcher(monkeypatch, PASSING_SCRIPT)

    exit_code = cli.main(_verify_args("--completed-task", "Build the form"))

    assert exit_code == 0
    assert "Verification - Final Report" in capsys.readouterr().out


def test_verify_failure_exit_code(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_scripted_launcher(monkeypatch, {"plan": [PLAN], "writing": [NOTHING], "execution": [NOTHING]})

    assert cli.main(_verify_args()) == cli.EXIT_VERIFICATION_FAILED


def test_verify_is_skipped_without_completed_tasks(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(cli, "build_launcher", lambda *a, **k: pytest.fail("should not run"))

    assert cli.main(_verify_args("--task", "Build the form")) == 0
    assert "Verification skipped" in capsys.readouterr().out


def test_verify_with_issue_number_detects_duplicates(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_scripted_launcher(monkeypatch, PASSING_SCRIPT)

    assert cli.main(_verify_args("--issue-number", "42")) == 0
    assert cli.main(_verify_args("--issue-number", "42")) == cli.EXIT_DUPLICATE
    assert _registry().get("acme/repo/42").status.value == "completed"  # type: ignore[union-attr]


def test_trigger_replays_a_webhook_payload(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], cli_env: Path
) -> None:
    _use_scripted_launcher(monkeypatch, PASSING_SCRIPT)
    payload = cli_env / "payload.json"
    payload.write_text(
        json.dumps(
            {
                "label": {"name": "swe-agent-auto"},
                "issue": {"number": 42, "title": "Add a login form"},
                "repository": {"full_name": "acme/repo"},
            }
        ),
        encoding="utf-8",
    )

    exit_code = cli.main(["trigger", "--event", "issues.labeled", "--payload", str(payload)])

    assert exit_code == 0
    printed = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert printed["status"] == "created"
    assert printed["key"] == "acme/repo/42"
    assert _registry().get("acme/repo/42").status.value == "completed"  # type: ignore[union-attr]


def test_runs_show_and_list(capsys: pytest.CaptureFixture[str]) -> None:
    _registry().create(RunRecord(key="acme/repo/42", owner="acme", repo="repo", issue_number=42))

    assert cli.main(["runs", "show", "--key", "acme/repo/42"]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["status"] == "created"

    assert cli.main(["runs", "list", "--repo", "acme/repo"]) == 0
    assert capsys.readouterr().out.startswith("acme/repo/42\tcreated\t")

    assert cli.main(["runs", "show", "--key", "acme/repo/7"]) == cli.EXIT_FAILURE


def test_configuration_errors_exit_with_code_2(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("ORCHESTRATOR_RUN_STORE", "redis")

    assert cli.main(["runs", "list", "--repo", "acme/repo"]) == cli.EXIT_CONFIG_ERROR
    assert "Configuration error" in capsys.readouterr().err


def test_repo_argument_must_be_owner_slash_repo() -> None:
    with pytest.raises(SystemExit):
        cli.main(["runs", "list", "--repo", "acme"])
