from __future__ import annotations

from dataclasses import dataclass
from typing import Any


def _dict(value: object) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True, slots=True)
class TriggerEvent:
    """A signal emitted by a trigger source.

    `type` is the source's event name (for GitHub webhooks, the
    ``X-GitHub-Event`` header); `payload` is the decoded body. Triggers never
    perform work themselves.
    """

    type: str
    payload: dict[str, object]

    @property
    def action(self) -> str | None:
        action = self.payload.get("action")
        return action if isinstance(action, str) and action else None

    @property
    def kind(self) -> str:
        """Event kind used for handler lookup, e.g. ``issues.labeled``."""

        return f"{self.type}.{self.action}" if self.action else self.type

    @property
    def repository(self) -> tuple[str, str] | None:
        repo = _dict(self.payload.get("repository"))
        full_name = repo.get("full_name")
        if isinstance(full_name, str) and full_name.count("/") == 1:
            owner, name = full_name.split("/")
            if owner and name:
                return owner, name
        owner_login = _dict(repo.get("owner")).get("login")
        name = repo.get("name")
        if isinstance(owner_login, str) and isinstance(name, str) and owner_login and name:
            return owner_login, name
        return None

    @property
    def issue(self) -> dict[str, Any]:
        return _dict(self.payload.get("issue"))

    @property
    def issue_number(self) -> int | None:
        number = self.issue.get("number")
        return number if isinstance(number, int) and number > 0 else None

    @property
    def issue_title(self) -> str | None:
        title = self.issue.get("title")
        return title if isinstance(title, str) else None

    @property
    def issue_body(self) -> str:
        body = self.issue.get("body")
        return body if isinstance(body, str) else ""

    @property
    def is_pull_request(self) -> bool:
        return "pull_request" in self.issue

    @property
    def label_name(self) -> str | None:
        name = _dict(self.payload.get("label")).get("name")
        return name if isinstance(name, str) and name else None

    @property
    def comment_body(self) -> str:
        body = _dict(self.payload.get("comment")).get("body")
        return body if isinstance(body, str) else ""

    @property
    def sender_is_bot(self) -> bool:
        return _dict(self.payload.get("sender")).get("type") == "Bot"
