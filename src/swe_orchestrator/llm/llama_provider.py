"""Local LLaMA LLM provider implementation."""

import logging
from typing import Any

from swe_orchestrator.llm.config import LLMConfig
from swe_orchestrator.llm.openai_provider import parse_tool_arguments, to_openai_tools
from swe_orchestrator.llm.profiles import strip_cache_control
from swe_orchestrator.llm.provider import (
    LLMProvider,
    Message,
    ModelInvocationError,
    ModelResponse,
    ToolSpec,
)
from swe_orchestrator.orchestrator.workflow.actions import ActionRequest

logger = logging.getLogger(__name__)


class LLaMAProvider(LLMProvider):
    """Local LLaMA model provider implementation.

    Requires llama-cpp-python to be installed:
        pip install llama-cpp-python
    """

    def __init__(self, config: LLMConfig, llm: Any | None = None) -> None:
        """Initialize the LLaMA provider.

        Args:
            config: LLM configuration.
            llm: Pre-loaded model (used by tests).

        Raises:
            ValueError: If model path is not provided.
            ImportError: If llama-cpp-python is not installed.
        """
        self.config = config
        self.model_name = config.model_name

        if llm is not None:
            self.llm = llm
            return

        if not config.llama_model_path:
            raise ValueError("LLaMA model path is required")

        try:
            from llama_cpp import Llama
        except ImportError as e:
            raise ImportError(
                "llama-cpp-python is required for LLaMA provider. "
                "Install it with: pip install llama-cpp-python"
            ) from e

        logger.info(f"Loading LLaMA model from: {config.llama_model_path}")

        self.llm = Llama(
            model_path=str(config.llama_model_path),
            n_ctx=config.llama_n_ctx,
            n_threads=config.llama_n_threads,
            verbose=False,
        )

        logger.info("LLaMA model loaded successfully")

    def invoke(
        self,
        messages: list[Message],
        tools: list[ToolSpec] | None = None,
        **kwargs: Any,
    ) -> ModelResponse:
        """Run one turn against the local model.

        Structured content segments are flattened, since llama.cpp chat
        templates only accept string content.
        """
        params: dict[str, Any] = {
            "messages": [strip_cache_control(message) for message in messages],
            "temperature": kwargs.pop("temperature", 0.2),
        }
        if tools:
            params["tools"] = to_openai_tools(tools)
            params["tool_choice"] = "auto"
        params.update(kwargs)

        try:
            result = self.llm.create_chat_completion(**params)
        except (RuntimeError, ValueError) as e:
            raise ModelInvocationError(f"LLaMA completion failed: {e}") from e

        message = result["choices"][0]["message"]
        requests = [
            ActionRequest(
                id=call.get("id") or f"call_{index}",
                name=call["function"]["name"],
                arguments=parse_tool_arguments(call["function"].get("arguments")),
            )
            for index, call in enumerate(message.get("tool_calls") or [])
        ]
        return ModelResponse(text=message.get("content") or "", action_requests=requests)
