"""Provider profiles: how a prompt is shaped for a given model family.

Some providers accept structured content segments with prompt-cache hints
(`cache_control`); others expect plain string content. The profile is chosen
from the configured model name.
"""

import copy
from abc import ABC, abstractmethod
from typing import Any

from swe_orchestrator.llm.provider import Message

EPHEMERAL_CACHE: dict[str, str] = {"type": "ephemeral"}


class PromptProfile(ABC):
    name: str = ""

    @abstractmethod
    def content(self, text: str) -> Any:
        """Shape a block of prompt text for this provider family."""

    @abstractmethod
    def history(self, messages: list[Message]) -> list[Message]:
        """Shape previously exchanged messages for this provider family."""

    def build(self, *, system: str, user: str, history: list[Message]) -> list[Message]:
        out: list[Message] = []
        if system.strip():
            out.append({"role": "system", "content": self.content(system)})
        if user.strip():
            out.append({"role": "user", "content": self.content(user)})
        out.extend(self.history(history))
        return out


class CacheControlProfile(PromptProfile):
    """Structured segments; the prompt prefix and the newest message are cache points."""

    name = "cache_control"

    def content(self, text: str) -> list[dict[str, Any]]:
        return [{"type": "text", "text": text, "cache_control": dict(EPHEMERAL_CACHE)}]

    def history(self, messages: list[Message]) -> list[Message]:
        shaped = [copy.deepcopy(message) for message in messages]
        for message in reversed(shaped):
            text = message.get("content")
            if isinstance(text, str) and text.strip():
                message["content"] = self.content(text)
                break
        return shaped


class PlainProfile(PromptProfile):
    name = "plain"

    def content(self, text: str) -> str:
        return text

    def history(self, messages: list[Message]) -> list[Message]:
        return [strip_cache_control(message) for message in messages]


def strip_cache_control(message: Message) -> Message:
    """Return `message` with structured segments flattened to plain text."""

    content = message.get("content")
    if not isinstance(content, list):
        return dict(message)
    text = "\n".join(
        str(segment.get("text", "")) for segment in content if isinstance(segment, dict)
    )
    return {**message, "content": text}


CACHE_CONTROL_PROFILE = CacheControlProfile()
PLAIN_PROFILE = PlainProfile()


def select_profile(model_name: str) -> PromptProfile:
    """Pick the profile for a model name.

    Claude models (names containing ``claude-``) get cache-controlled segments.
    """

    if "claude-" in model_name.lower():
        return CACHE_CONTROL_PROFILE
    return PLAIN_PROFILE
