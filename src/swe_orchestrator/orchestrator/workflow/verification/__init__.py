"""Test-verification workflow: plan, write, run and diagnose tests for a change."""

from __future__ import annotations

from .routing import build_verification_graph
from .steps import (
    CONCLUSION,
    STEP_ORDER,
    VerificationSteps,
    VerificationSummary,
    build_conclusion_report,
    final_status,
    summarize,
)

__all__ = [
    "CONCLUSION",
    "STEP_ORDER",
    "VerificationSteps",
    "VerificationSummary",
    "build_conclusion_report",
    "build_verification_graph",
    "final_status",
    "summarize",
]
