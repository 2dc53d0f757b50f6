"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from swe_orchestrator.orchestrator.runs.registry import RunRecord

WebhookStatus = Literal["created", "duplicate", "ignored", "approved", "rejected", "clarify", "error"]


class ApiRun(BaseModel):
    key: str
    run_id: str
    thread_id: str
    status: str
    owner: str
    repo: str
    issue_number: int
    issue_title: str | None = None
    auto_accept_plan: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_record(cls, record: RunRecord) -> ApiRun:
        return cls.model_validate(record.model_dump(mode="json"))


class WebhookResponse(BaseModel):
    status: WebhookStatus
    key: str | None = None
    run_id: str | None = None
    message: str = ""
