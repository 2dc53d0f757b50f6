"""Command safety filter used in local mode.

In local mode actions run directly against the developer's machine, so shell
commands requested by the model are screened first. Requests matching a deny
rule are removed from the batch before dispatch.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from swe_orchestrator.orchestrator.workflow.actions import ActionRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DenyRule:
    pattern: re.Pattern[str]
    reason: str


def _rule(pattern: str, reason: str) -> DenyRule:
    return DenyRule(pattern=re.compile(pattern, re.IGNORECASE), reason=reason)


DEFAULT_DENY_RULES: tuple[DenyRule, ...] = (
    _rule(r"\brm\s+(-[a-z]*r[a-z]*f|-[a-z]*f[a-z]*r)[a-z]*\s+(/|~|\$home)(\s|$)", "recursive delete of a root or home directory"),
    _rule(r"\brm\s+-[a-z]*r[a-z]*\s+\.\.?(/)?(\s|$)", "recursive delete of the working tree"),
    _rule(r"(^|[;&|]\s*)sudo\b", "privilege escalation"),
    _rule(r"\bmkfs(\.[a-z0-9]+)?\b", "filesystem formatting"),
    _rule(r"\bdd\b.*\bof=/dev/", "raw device write"),
    _rule(r"\b(shutdown|reboot|halt|poweroff)\b", "host power control"),
    _rule(r":\(\)\s*\{\s*:\|:&\s*\};:", "fork bomb"),
    _rule(r"\b(curl|wget)\b[^|]*\|\s*(sudo\s+)?(ba|z)?sh\b", "piping a download into a shell"),
    _rule(r"\bchmod\s+-R\s+0?777\s+/", "recursive permission change on root"),
    _rule(r"\bgit\s+push\b.*(--force|-f\b)", "force push"),
    _rule(r">\s*/dev/sd[a-z]", "raw device write"),
)

# Capabilities whose `command` argument is executed by a shell.
_SHELL_ARGUMENT_CAPABILITIES: frozenset[str] = frozenset({"shell"})


@dataclass(frozen=True, slots=True)
class RemovedRequest:
    request: ActionRequest
    reason: str


@dataclass(frozen=True, slots=True)
class FilterResult:
    allowed: list[ActionRequest]
    removed: list[RemovedRequest] = field(default_factory=list)

    @property
    def was_filtered(self) -> bool:
        return bool(self.removed)


def _command_text(request: ActionRequest) -> str | None:
    if request.name not in _SHELL_ARGUMENT_CAPABILITIES:
        return None
    command = request.arguments.get("command")
    if isinstance(command, str):
        return command
    if isinstance(command, list):
        return " ".join(str(part) for part in command)
    return None


class CommandSafetyFilter:
    def __init__(self, rules: Sequence[DenyRule] = DEFAULT_DENY_RULES) -> None:
        self._rules = tuple(rules)

    def evaluate(self, request: ActionRequest) -> str | None:
        """Return the reason `request` is unsafe, or None when it may run."""

        command = _command_text(request)
        if command is None:
            return None
        for rule in self._rules:
            if rule.pattern.search(command):
                return rule.reason
        return None

    def filter(self, requests: Sequence[ActionRequest]) -> FilterResult:
        allowed: list[ActionRequest] = []
        removed: list[RemovedRequest] = []
        for request in requests:
            reason = self.evaluate(request)
            if reason is None:
                allowed.append(request)
                continue
            logger.warning(
                "Removed unsafe action request",
                extra={"request_id": request.id, "tool": request.name, "reason": reason},
            )
            removed.append(RemovedRequest(request=request, reason=reason))
        return FilterResult(allowed=allowed, removed=removed)
