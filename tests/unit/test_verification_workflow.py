"""End-to-end tests of the verification graph with a scripted model and fake sandbox."""

from __future__ import annotations

import pytest

from swe_orchestrator.llm.provider import ModelInvocationError, ModelResponse
from swe_orchestrator.orchestrator.sandbox.executor import CommandResult
from swe_orchestrator.orchestrator.tools import EXECUTION_TOOLS, WRITING_TOOLS, build_capabilities
from swe_orchestrator.orchestrator.workflow.actions import ActionRequest
from swe_orchestrator.orchestrator.workflow.dispatcher import ToolDispatcher
from swe_orchestrator.orchestrator.workflow.graph import CompiledWorkflow, RunConfig
from swe_orchestrator.orchestrator.workflow.policy import SafetyValve
from swe_orchestrator.orchestrator.workflow.state import (
    EntryOrigin,
    Marker,
    VerificationStatus,
    WorkflowState,
)
from swe_orchestrator.orchestrator.workflow.verification import (
    VerificationSteps,
    build_verification_graph,
    summarize,
)
from tests.fakes import FakeExecutor, ScriptedModel, shell_request

PLAN = ModelResponse(text="1. Unit test the login form validation")
NO_ACTIONS = ModelResponse(text="Nothing to do.")


def _workflow(
    model: ScriptedModel,
    executor: FakeExecutor,
    *,
    valve: SafetyValve | None = None,
    local_mode: bool = False,
) -> CompiledWorkflow:
    capabilities = build_capabilities(executor)
    steps = VerificationSteps(model, ToolDispatcher(capabilities), capabilities, local_mode=local_mode)
    return build_verification_graph(steps, safety_valve=valve)


def _run(workflow: CompiledWorkflow, state: WorkflowState) -> tuple[WorkflowState, list[str]]:
    visited: list[str] = []
    final = workflow.run(
        state, RunConfig(run_id="run-1"), listeners=[lambda step, _state: visited.append(step)]
    )
    return final, visited


def _create_file(request_id: str, path: str) -> ActionRequest:
    return ActionRequest(
        id=request_id,
        name="text_editor",
        arguments={"command": "create", "path": path, "file_text": "def test_ok():\n    assert True\n"},
    )


def _conclusion(state: WorkflowState) -> str:
    last = state.last_entry
    assert last is not None and last.has(Marker.CONCLUSION)
    return last.content


def test_no_actions_concludes_as_failed(base_state: WorkflowState, fake_executor: FakeExecutor) -> None:
    model = ScriptedModel({"plan": [PLAN], "writing": [NO_ACTIONS], "execution": [NO_ACTIONS]})

    final, visited = _run(_workflow(model, fake_executor), base_state)

    assert visited == [
        "initialize",
        "generate_test_plan",
        "gen_writing_actions",
        "gen_execution_actions",
        "conclusion",
    ]
    assert final.action_count == 0
    assert final.verification_status == VerificationStatus.FAILED
    assert "Testing could not be completed" in _conclusion(final)
    assert fake_executor.commands == []


def test_passing_tests_follow_the_happy_path(base_state: WorkflowState) -> None:
    executor = FakeExecutor(lambda command: CommandResult(output="2 passed in 0.12s", exit_code=0))
    model = ScriptedModel(
        {
            "plan": [PLAN],
            "writing": [
                ModelResponse(
                    text="Writing tests",
                    action_requests=[
                        _create_file("w1", "tests/test_login.py"),
                        _create_file("w2", "tests/test_form.py"),
                    ],
                )
            ],
            "execution": [ModelResponse(text="", action_requests=[shell_request("x1", "pytest -q")])],
        }
    )

    final, visited = _run(_workflow(model, executor), base_state)

    assert visited == [
        "initialize",
        "generate_test_plan",
        "gen_writing_actions",
        "take_review_actions",
        "gen_execution_actions",
        "take_execution_actions",
        "conclusion",
    ]
    assert final.tests_successful is True
    assert final.action_count == 3
    assert final.verification_status == VerificationStatus.COMPLETED
    assert set(executor.files) == {"tests/test_login.py", "tests/test_form.py"}
    assert executor.commands == ["pytest -q"]
    assert "✅ PASSED" in _conclusion(final)

    summary = summarize(final)
    assert (summary.tests_created, summary.tests_executed, summary.errors) == (1, 1, 0)


def test_passing_execution_without_written_tests_is_a_failure(base_state: WorkflowState) -> None:
    executor = FakeExecutor(lambda command: CommandResult(output="5 passed in 0.40s", exit_code=0))
    model = ScriptedModel(
        {
            "plan": [PLAN],
            "writing": [NO_ACTIONS],
            "execution": [ModelResponse(text="", action_requests=[shell_request("x1", "pytest")])],
        }
    )

    final, visited = _run(_workflow(model, executor), base_state)

    assert visited == [
        "initialize",
        "generate_test_plan",
        "gen_writing_actions",
        "gen_execution_actions",
        "take_execution_actions",
        "conclusion",
    ]
    assert final.tests_successful is True
    assert final.action_count == 1
    assert summarize(final).tests_created == 0
    assert final.verification_status == VerificationStatus.FAILED
    assert "**Tests Created:** ❌ 0" in _conclusion(final)


def test_filtered_writing_batch_replaces_the_original_request(base_state: WorkflowState) -> None:
    executor = FakeExecutor(lambda command: CommandResult(output="1 passed in 0.05s", exit_code=0))
    model = ScriptedModel(
        {
            "plan": [PLAN],
            "writing": [
                ModelResponse(
                    text="Writing tests",
                    action_requests=[_create_file("w1", "tests/test_login.py"), shell_request("w2", "sudo rm x")],
                )
            ],
            "execution": [ModelResponse(text="", action_requests=[shell_request("x1", "pytest -q")])],
        }
    )

    final, _ = _run(_workflow(model, executor, local_mode=True), base_state)

    ids = [entry.id for entry in final.transcript]
    assert len(ids) == len(set(ids))
    writing = final.entries_with(Marker.WRITING_TESTS)
    assert len(writing) == 1
    assert [r.id for r in writing[0].action_requests] == ["w1"]
    assert summarize(final).tests_created == 1
    assert executor.commands == ["pytest -q"]
    assert final.verification_status == VerificationStatus.COMPLETED


def test_phases_offer_their_own_tool_sets(base_state: WorkflowState, fake_executor: FakeExecutor) -> None:
    model = ScriptedModel({"plan": [PLAN], "writing": [NO_ACTIONS], "execution": [NO_ACTIONS]})

    _run(_workflow(model, fake_executor), base_state)

    offered = {phase: tools for phase, _, tools in model.calls}
    assert offered["plan"] is None
    assert {t.name for t in offered["writing"]} == set(WRITING_TOOLS)
    assert {t.name for t in offered["execution"]} == set(EXECUTION_TOOLS)


def test_repeated_failures_stop_after_three_retry_cycles(base_state: WorkflowState) -> None:
    executor = FakeExecutor(lambda command: CommandResult(output="1 Test failed", exit_code=1))
    model = ScriptedModel(
        {
            "plan": [PLAN],
            "writing": [ModelResponse(text="", action_requests=[_create_file("w1", "tests/test_login.py")])],
            "execution": [ModelResponse(text="", action_requests=[shell_request("x1", "pytest")])],
            "diagnosis": [ModelResponse(text="The assertion in test_login is wrong.")],
        }
    )

    final, visited = _run(_workflow(model, executor), base_state)

    assert model.phases().count("diagnosis") == 4
    assert final.diagnosis_attempts == 4
    assert visited.count("gen_writing_actions") == 4
    assert visited[-2:] == ["diagnose_error", "conclusion"]
    assert final.tests_successful is False
    assert final.verification_status == VerificationStatus.FAILED
    assert "Testing completed with issues" in _conclusion(final)


def test_safety_valve_forces_conclusion(base_state: WorkflowState) -> None:
    executor = FakeExecutor(lambda command: CommandResult(output="1 Test failed", exit_code=1))
    model = ScriptedModel(
        {
            "plan": [PLAN],
            "writing": [ModelResponse(text="", action_requests=[_create_file("w1", "tests/test_login.py")])],
            "execution": [ModelResponse(text="", action_requests=[shell_request("x1", "pytest")])],
            "diagnosis": [ModelResponse(text="Try again.")],
        }
    )

    final, visited = _run(_workflow(model, executor, valve=SafetyValve(max_actions=2)), base_state)

    assert visited == [
        "initialize",
        "generate_test_plan",
        "gen_writing_actions",
        "take_review_actions",
        "conclusion",
    ]
    assert "diagnosis" not in model.phases()
    assert final.verification_status == VerificationStatus.FAILED


def test_empty_test_plan_routes_to_conclusion(base_state: WorkflowState, fake_executor: FakeExecutor) -> None:
    model = ScriptedModel({"plan": [ModelResponse(text="   ")]})

    final, visited = _run(_workflow(model, fake_executor), base_state)

    assert visited == ["initialize", "generate_test_plan", "conclusion"]
    assert final.transcript[-2].has(Marker.ERROR)
    assert model.phases() == ["plan"]


def test_model_failure_during_planning_aborts_the_run(
    base_state: WorkflowState, fake_executor: FakeExecutor
) -> None:
    model = ScriptedModel({"plan": [ModelInvocationError("model unavailable")]})

    with pytest.raises(ModelInvocationError, match="model unavailable"):
        _workflow(model, fake_executor).run(base_state)


def test_model_failure_during_diagnosis_concludes(base_state: WorkflowState) -> None:
    executor = FakeExecutor(lambda command: CommandResult(output="", exit_code=2))
    model = ScriptedModel(
        {
            "plan": [PLAN],
            "writing": [NO_ACTIONS],
            "execution": [ModelResponse(text="", action_requests=[shell_request("x1", "pytest")])],
            "diagnosis": [ModelInvocationError("rate limited")],
        }
    )

    final, visited = _run(_workflow(model, executor), base_state)

    assert visited[-2:] == ["diagnose_error", "conclusion"]
    assert final.diagnosis_attempts == 1
    failed_diagnosis = final.transcript[-2]
    assert failed_diagnosis.origin == EntryOrigin.DIAGNOSTIC
    assert failed_diagnosis.has(Marker.ERROR)
    assert "rate limited" in failed_diagnosis.content


def test_unknown_tool_during_writing_goes_to_diagnosis(base_state: WorkflowState, fake_executor: FakeExecutor) -> None:
    model = ScriptedModel(
        {
            "plan": [PLAN],
            "writing": [
                ModelResponse(text="", action_requests=[ActionRequest(id="w1", name="frobnicate")]),
                NO_ACTIONS,
            ],
            "execution": [NO_ACTIONS],
            "diagnosis": [ModelResponse(text="Use the text_editor tool instead.")],
        }
    )

    final, visited = _run(_workflow(model, fake_executor), base_state)

    assert visited[:5] == [
        "initialize",
        "generate_test_plan",
        "gen_writing_actions",
        "take_review_actions",
        "diagnose_error",
    ]
    assert any(e.content == "Unknown tool: frobnicate" for e in final.transcript)
    assert visited[-1] == "conclusion"
