"""Capabilities the model can request during a run."""

from __future__ import annotations

from swe_orchestrator.orchestrator.sandbox.executor import SandboxExecutor
from .base import Capability, CapabilityRegistry, ToolOutput
from .browser import BrowserAutomationCapability
from .files import EditCapability, ViewCapability
from .search import SearchCapability
from .shell import ShellCapability

# Writing tests may touch files; executing them may not.
WRITING_TOOLS: tuple[str, ...] = ("grep", "shell", "view", "text_editor", "playwright")
EXECUTION_TOOLS: tuple[str, ...] = ("shell", "grep", "view", "playwright")


def build_capabilities(
    executor: SandboxExecutor, *, timeout_seconds: float | None = None
) -> CapabilityRegistry:
    return CapabilityRegistry(
        [
            ShellCapability(executor, timeout_seconds=timeout_seconds),
            SearchCapability(executor, timeout_seconds=timeout_seconds),
            ViewCapability(executor, timeout_seconds=timeout_seconds),
            EditCapability(executor, timeout_seconds=timeout_seconds),
            BrowserAutomationCapability(executor, timeout_seconds=timeout_seconds),
        ]
    )


__all__ = [
    "EXECUTION_TOOLS",
    "WRITING_TOOLS",
    "Capability",
    "CapabilityRegistry",
    "ToolOutput",
    "build_capabilities",
]
