"""Abstract base class for LLM providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from swe_orchestrator.orchestrator.workflow.actions import ActionRequest

Message = dict[str, Any]


class ModelInvocationError(RuntimeError):
    """Raised when a provider call fails (network, API or decoding error)."""


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """A tool advertised to the model.

    `parameters` is a JSON schema describing the tool's arguments.
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ModelResponse:
    """A model reply: free text plus zero or more requested actions."""

    text: str
    action_requests: list[ActionRequest] = field(default_factory=list)


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    Workflow steps only depend on this interface, so backends (OpenAI-compatible
    endpoints, local llama.cpp models, scripted test doubles) are interchangeable.
    """

    model_name: str = ""

    @abstractmethod
    def invoke(
        self,
        messages: list[Message],
        tools: list[ToolSpec] | None = None,
        **kwargs: Any,
    ) -> ModelResponse:
        """Run one model turn, optionally offering tools.

        Args:
            messages: Provider-shaped messages (see `llm.profiles`).
            tools: Tools the model may request. None or empty disables tool calling.
            **kwargs: Additional provider-specific parameters.

        Returns:
            The model's text and any action requests it produced.

        Raises:
            ModelInvocationError: If the provider call fails.
        """

    def complete(self, prompt: str, **kwargs: Any) -> str:
        """Single-prompt convenience over `invoke` with tool calling disabled."""

        return self.invoke([{"role": "user", "content": prompt}], None, **kwargs).text
