"""OpenAI LLM provider implementation."""

import json
import logging
from typing import Any

import openai
from openai import OpenAI

from swe_orchestrator.llm.config import LLMConfig
from swe_orchestrator.llm.provider import (
    LLMProvider,
    Message,
    ModelInvocationError,
    ModelResponse,
    ToolSpec,
)
from swe_orchestrator.orchestrator.workflow.actions import ActionRequest

logger = logging.getLogger(__name__)


def to_openai_tools(tools: list[ToolSpec]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }
        for tool in tools
    ]


def parse_tool_arguments(raw: str | None) -> dict[str, Any]:
    """Decode a tool call's JSON arguments.

    Undecodable arguments become an empty mapping; argument validation later
    reports the problem back to the model.
    """

    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Model produced tool arguments that are not valid JSON")
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAIProvider(LLMProvider):
    """OpenAI API provider implementation.

    Also works with OpenAI-compatible endpoints via `openai_base_url`.
    """

    def __init__(self, config: LLMConfig, client: Any | None = None) -> None:
        """Initialize the OpenAI provider.

        Args:
            config: LLM configuration.
            client: Pre-built client (used by tests).

        Raises:
            ValueError: If API key is not provided.
        """
        if client is None and not config.openai_api_key:
            raise ValueError("OpenAI API key is required")

        self.config = config
        self.client = client or OpenAI(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            timeout=config.request_timeout_seconds,
        )
        self.model = config.openai_model
        self.model_name = config.openai_model
        self.temperature = config.openai_temperature

        logger.info(f"OpenAI provider initialized with model: {self.model}")

    def _create(self, **params: Any) -> Any:
        try:
            return self.client.chat.completions.create(**params)
        except openai.OpenAIError as e:
            raise ModelInvocationError(f"OpenAI request failed: {e}") from e

    def invoke(
        self,
        messages: list[Message],
        tools: list[ToolSpec] | None = None,
        **kwargs: Any,
    ) -> ModelResponse:
        """Run one turn with tool calling enabled.

        Args:
            messages: Provider-shaped messages.
            tools: Tools the model may call.
            **kwargs: Additional OpenAI-specific parameters.

        Returns:
            The reply text and the requested actions, in the order the model produced them.
        """
        params: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": kwargs.pop("temperature", self.temperature),
        }
        if tools:
            params["tools"] = to_openai_tools(tools)
            params["tool_choice"] = "auto"
            params["parallel_tool_calls"] = True
        params.update(kwargs)

        logger.debug(f"Invoking model with {len(messages)} messages and {len(tools or [])} tools")
        response = self._create(**params)
        message = response.choices[0].message

        requests = [
            ActionRequest(
                # Some compatible endpoints omit call ids.
                id=call.id or f"call_{index}",
                name=call.function.name,
                arguments=parse_tool_arguments(call.function.arguments),
            )
            for index, call in enumerate(message.tool_calls or [])
        ]
        return ModelResponse(text=message.content or "", action_requests=requests)
