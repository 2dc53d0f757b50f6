"""Capability interface and registry.

A capability is a named operation the model may request (run a shell command,
search the tree, view or edit a file, drive a browser test runner). Each one
declares a pydantic model for its arguments, which doubles as the JSON schema
advertised to the model.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict

from swe_orchestrator.llm.provider import ToolSpec
from swe_orchestrator.orchestrator.sandbox.executor import SandboxExecutor, SessionContext


@dataclass(frozen=True, slots=True)
class ToolOutput:
    result: str
    status: Literal["success", "error"] = "success"
    exit_code: int | None = None


class CapabilityArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class Capability(ABC):
    name: ClassVar[str]
    description: ClassVar[str]
    args_model: ClassVar[type[CapabilityArgs]]

    def __init__(self, executor: SandboxExecutor, *, timeout_seconds: float | None = None) -> None:
        self._executor = executor
        self._timeout_seconds = timeout_seconds

    def parse_arguments(self, arguments: Mapping[str, Any]) -> CapabilityArgs:
        """Validate raw arguments; raises pydantic.ValidationError."""

        return self.args_model.model_validate(dict(arguments))

    def invoke(self, arguments: Mapping[str, Any], session: SessionContext) -> ToolOutput:
        return self.run(self.parse_arguments(arguments), session)

    @abstractmethod
    def run(self, args: Any, session: SessionContext) -> ToolOutput: ...

    def spec(self) -> ToolSpec:
        return ToolSpec(
            name=self.name,
            description=self.description,
            parameters=self.args_model.model_json_schema(),
        )


class CapabilityRegistry:
    def __init__(self, capabilities: Iterable[Capability] = ()) -> None:
        self._capabilities: dict[str, Capability] = {}
        for capability in capabilities:
            self.register(capability)

    def register(self, capability: Capability) -> None:
        if capability.name in self._capabilities:
            raise ValueError(f"Capability already registered: {capability.name}")
        self._capabilities[capability.name] = capability

    def get(self, name: str) -> Capability | None:
        return self._capabilities.get(name)

    def names(self) -> list[str]:
        return list(self._capabilities)

    def specs(self, allowed: Iterable[str] | None = None) -> list[ToolSpec]:
        allowed_set = set(allowed) if allowed is not None else None
        return [
            capability.spec()
            for name, capability in self._capabilities.items()
            if allowed_set is None or name in allowed_set
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)
