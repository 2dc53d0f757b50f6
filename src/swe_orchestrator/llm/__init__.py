"""LLM package initialization."""

from swe_orchestrator.llm.config import LLMConfig
from swe_orchestrator.llm.factory import create_provider
from swe_orchestrator.llm.profiles import PromptProfile, select_profile
from swe_orchestrator.llm.provider import (
    LLMProvider,
    ModelInvocationError,
    ModelResponse,
    ToolSpec,
)

__all__ = [
    "LLMConfig",
    "LLMProvider",
    "ModelInvocationError",
    "ModelResponse",
    "PromptProfile",
    "ToolSpec",
    "create_provider",
    "select_profile",
]
