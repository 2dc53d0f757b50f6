"""Routers of the verification workflow and the graph that wires them up."""

from __future__ import annotations

import logging

from swe_orchestrator.orchestrator.workflow.graph import CompiledWorkflow, WorkflowGraph
from swe_orchestrator.orchestrator.workflow.policy import RetryPolicy, Router, SafetyValve
from swe_orchestrator.orchestrator.workflow.state import Marker, WorkflowState
from .steps import (
    CONCLUSION,
    DIAGNOSE_ERROR,
    GEN_EXECUTION_ACTIONS,
    GEN_WRITING_ACTIONS,
    GENERATE_TEST_PLAN,
    INITIALIZE,
    TAKE_EXECUTION_ACTIONS,
    TAKE_REVIEW_ACTIONS,
    VerificationSteps,
)

logger = logging.getLogger(__name__)

REVIEW_ERROR_WINDOW = 3


def _last_agent_requested_actions(state: WorkflowState) -> bool:
    entry = state.last_agent_entry()
    return entry is not None and entry.has_action_requests


def route_from_test_plan(state: WorkflowState) -> str:
    last = state.last_entry
    if last is not None and last.has(Marker.ERROR):
        logger.warning("Test plan generation failed; moving to conclusion")
        return CONCLUSION
    return GEN_WRITING_ACTIONS


def route_from_writing_actions(state: WorkflowState) -> str:
    if _last_agent_requested_actions(state):
        return TAKE_REVIEW_ACTIONS
    return GEN_EXECUTION_ACTIONS


def route_from_review_actions(state: WorkflowState) -> str:
    recent = state.transcript[-REVIEW_ERROR_WINDOW:]
    if any(entry.has(Marker.ERROR) for entry in recent):
        return DIAGNOSE_ERROR
    return GEN_EXECUTION_ACTIONS


def route_from_execution_actions(state: WorkflowState) -> str:
    if _last_agent_requested_actions(state):
        return TAKE_EXECUTION_ACTIONS
    return CONCLUSION


def route_from_execution_results(state: WorkflowState) -> str:
    if state.tests_successful is False:
        return DIAGNOSE_ERROR
    return CONCLUSION


def make_diagnosis_router(policy: RetryPolicy) -> Router:
    def route_from_diagnosis(state: WorkflowState) -> str:
        if policy.should_retry(state):
            logger.info(
                "Retrying after diagnosis",
                extra={"prior_attempts": policy.prior_attempts(state), "max_retries": policy.max_retries},
            )
            return GEN_WRITING_ACTIONS
        logger.info(
            "Moving to conclusion after diagnosis",
            extra={"prior_attempts": policy.prior_attempts(state), "max_retries": policy.max_retries},
        )
        return CONCLUSION

    return route_from_diagnosis


def build_verification_graph(
    steps: VerificationSteps,
    *,
    retry_policy: RetryPolicy | None = None,
    safety_valve: SafetyValve | None = None,
) -> CompiledWorkflow:
    retry = retry_policy or RetryPolicy()
    valve = safety_valve or SafetyValve()

    graph = WorkflowGraph(name="verification")
    for name, handler in steps.handlers().items():
        graph.register_step(name, handler)
    graph.set_entry_point(INITIALIZE)

    routes: list[tuple[str, Router, set[str]]] = [
        (GENERATE_TEST_PLAN, route_from_test_plan, {GEN_WRITING_ACTIONS, CONCLUSION}),
        (GEN_WRITING_ACTIONS, route_from_writing_actions, {TAKE_REVIEW_ACTIONS, GEN_EXECUTION_ACTIONS}),
        (TAKE_REVIEW_ACTIONS, route_from_review_actions, {GEN_EXECUTION_ACTIONS, DIAGNOSE_ERROR}),
        (GEN_EXECUTION_ACTIONS, route_from_execution_actions, {TAKE_EXECUTION_ACTIONS, CONCLUSION}),
        (TAKE_EXECUTION_ACTIONS, route_from_execution_results, {CONCLUSION, DIAGNOSE_ERROR}),
        (DIAGNOSE_ERROR, make_diagnosis_router(retry), {GEN_WRITING_ACTIONS, CONCLUSION}),
    ]
    for source, router, targets in routes:
        # Every router can be overridden by the valve.
        graph.register_router(source, valve.wrap(router), targets | {valve.target})

    return graph.compile()
