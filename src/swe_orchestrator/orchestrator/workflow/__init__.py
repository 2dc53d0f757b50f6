"""Workflow domain concepts.

This package provides first-class types for:
- Trigger events (signals)
- Action requests and results
- Shared workflow state and its patches
- The step graph engine and its routing policies
- The run status lifecycle
"""

from .actions import ActionRequest, ActionResult
from .graph import END, CompiledWorkflow, Continue, Patch, RunConfig, Terminal, WorkflowGraph
from .state import Marker, TranscriptEntry, VerificationStatus, WorkflowState
from .state_machine import RunStatus

__all__ = [
    "END",
    "ActionRequest",
    "ActionResult",
    "CompiledWorkflow",
    "Continue",
    "Marker",
    "Patch",
    "RunConfig",
    "RunStatus",
    "Terminal",
    "TranscriptEntry",
    "VerificationStatus",
    "WorkflowGraph",
    "WorkflowState",
]
