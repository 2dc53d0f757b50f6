"""Selecting the model provider from configuration."""

from __future__ import annotations

import logging
from collections.abc import Callable

from swe_orchestrator.llm.config import LLMConfig
from swe_orchestrator.llm.llama_provider import LLaMAProvider
from swe_orchestrator.llm.openai_provider import OpenAIProvider
from swe_orchestrator.llm.provider import LLMProvider

logger = logging.getLogger(__name__)

ProviderBuilder = Callable[[LLMConfig], LLMProvider]

PROVIDERS: dict[str, ProviderBuilder] = {
    "openai": OpenAIProvider,
    "llama": LLaMAProvider,
}


def create_provider(config: LLMConfig | None = None) -> LLMProvider:
    """Build the provider named by ``config.provider`` (env ``ORCHESTRATOR_LLM_PROVIDER``).

    Raises:
        ValueError: If the provider is unknown or its settings are incomplete.
    """

    config = config or LLMConfig()
    try:
        builder = PROVIDERS[config.provider]
    except KeyError:
        raise ValueError(f"Unsupported LLM provider: {config.provider}") from None

    provider = builder(config)
    logger.info("Model provider ready", extra={"provider": config.provider, "model": provider.model_name})
    return provider
