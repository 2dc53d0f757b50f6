"""SWE Orchestrator.

Runs multi-phase automated software tasks as a graph of steps over shared
state:
- a workflow engine with conditional routing and a bounded diagnose loop
- concurrent, failure-isolated action dispatch with a command safety filter
- idempotent run registration for externally triggered runs
"""

__version__ = "0.1.0"

from swe_orchestrator.orchestrator.config import OrchestratorSettings

__all__ = ["__version__", "OrchestratorSettings"]
