"""Concurrent execution of the action requests in one agent message.

Every request in a batch produces exactly one `ActionResult`, in request order,
no matter how its invocation ends. Failures are converted to error results and
never escape the dispatcher.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from pydantic import ValidationError

from swe_orchestrator.orchestrator.sandbox.executor import SandboxTimeoutError, SessionContext
from swe_orchestrator.orchestrator.tools.base import Capability, CapabilityRegistry
from swe_orchestrator.orchestrator.tools.safety import CommandSafetyFilter
from .actions import ActionRequest, ActionResult, ensure_unique_ids, unknown_action_result
from .policy import aggregate_success
from .state import EntryOrigin, Marker, TranscriptEntry

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_CHARS = 15000
EMPTY_SUCCESS_CONTENT = "Tool call returned no result"
EMPTY_ERROR_CONTENT = "Tool call failed"


def truncate_output(text: str, max_chars: int = DEFAULT_MAX_OUTPUT_CHARS) -> tuple[str, bool]:
    """Cut `text` to at most `max_chars`, keeping its head and tail.

    Returns the (possibly) shortened text and whether anything was removed.
    """

    if len(text) <= max_chars:
        return text, False
    omitted = len(text) - max_chars
    marker = f"\n\n... [{omitted} characters truncated] ...\n\n"
    budget = max(max_chars - len(marker), 0)
    head = budget // 2
    tail = budget - head
    tail_text = text[-tail:] if tail else ""
    return f"{text[:head]}{marker}{tail_text}", True


def format_bad_arguments(capability: Capability, arguments: dict[str, object], error: ValidationError) -> str:
    problems = "\n".join(
        f"- {'.'.join(str(part) for part in item['loc']) or '<root>'}: {item['msg']}"
        for item in error.errors()
    )
    schema = json.dumps(capability.args_model.model_json_schema(), indent=2, default=str)
    received = json.dumps(arguments, indent=2, default=str)
    return (
        f"Error: Received tool input did not match expected schema for tool {capability.name!r}.\n"
        f"Problems:\n{problems}\n\nExpected schema:\n{schema}\n\nReceived arguments:\n{received}"
    )


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    results: list[ActionResult]
    rewritten_message: TranscriptEntry | None = None
    markers: frozenset[Marker] = field(default_factory=frozenset)

    @property
    def success(self) -> bool:
        return aggregate_success(self.results)

    def entries(self) -> list[TranscriptEntry]:
        """Transcript entries for the state patch: the rewritten request (if any), then results.

        The rewritten request keeps the original id, so applying the patch
        replaces the original request in place.
        """

        out: list[TranscriptEntry] = []
        if self.rewritten_message is not None:
            out.append(self.rewritten_message)
        out.extend(TranscriptEntry.from_result(result, markers=self.markers) for result in self.results)
        return out


class ToolDispatcher:
    def __init__(
        self,
        capabilities: CapabilityRegistry,
        *,
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
        safety_filter: CommandSafetyFilter | None = None,
        max_workers: int | None = None,
    ) -> None:
        self._capabilities = capabilities
        self._max_output_chars = max_output_chars
        self._safety_filter = safety_filter or CommandSafetyFilter()
        self._max_workers = max_workers

    def dispatch(
        self,
        message: TranscriptEntry,
        session: SessionContext,
        *,
        allowed: Iterable[str] | None = None,
        markers: Iterable[Marker] = (),
    ) -> DispatchOutcome:
        """Execute every action request in `message` concurrently.

        Args:
            message: The agent entry carrying the requests.
            session: Execution context shared by all invocations.
            allowed: Capability names permitted in this phase; others are unknown.
            markers: Markers attached to the produced result entries.

        Raises:
            ValueError: If `message` is not an agent entry with action requests, or
                if two requests share an id.
        """

        if message.origin != EntryOrigin.AGENT or not message.action_requests:
            raise ValueError("dispatch requires an agent entry with at least one action request")
        requests = list(message.action_requests)
        ensure_unique_ids(requests)

        rewritten: TranscriptEntry | None = None
        if session.local_mode:
            filtered = self._safety_filter.filter(requests)
            if filtered.was_filtered:
                requests = filtered.allowed
                rewritten = message.model_copy(update={"action_requests": list(requests)})

        marker_set = frozenset(markers)
        if not requests:
            logger.warning(
                "Every action request was removed by the safety filter",
                extra={"session_id": session.session_id},
            )
            return DispatchOutcome(results=[], rewritten_message=rewritten, markers=marker_set)

        allowed_set = set(allowed) if allowed is not None else None
        results = self._run_all(requests, session, allowed_set)

        logger.info(
            "Dispatched action batch",
            extra={
                "session_id": session.session_id,
                "requests": len(requests),
                "errors": sum(1 for r in results if not r.ok),
            },
        )
        return DispatchOutcome(results=results, rewritten_message=rewritten, markers=marker_set)

    def _run_all(
        self,
        requests: list[ActionRequest],
        session: SessionContext,
        allowed: set[str] | None,
    ) -> list[ActionResult]:
        workers = self._max_workers or len(requests)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dispatch") as pool:
            futures = [pool.submit(self._run_one, request, session, allowed) for request in requests]
            # _run_one never raises, so result() only waits.
            return [future.result() for future in futures]

    def _run_one(
        self,
        request: ActionRequest,
        session: SessionContext,
        allowed: set[str] | None,
    ) -> ActionResult:
        capability = self._capabilities.get(request.name)
        if capability is None or (allowed is not None and request.name not in allowed):
            logger.error("Unknown tool requested", extra={"tool": request.name, "request_id": request.id})
            return unknown_action_result(request)

        logger.info("Executing action", extra={"tool": request.name, "request_id": request.id})
        status = "success"
        try:
            output = capability.invoke(request.arguments, session)
            content = output.result
            status = output.status
            if not content:
                content = EMPTY_SUCCESS_CONTENT if status == "success" else EMPTY_ERROR_CONTENT
        except ValidationError as e:
            status = "error"
            logger.error(
                "Action arguments did not match the expected schema",
                extra={"tool": request.name, "request_id": request.id},
            )
            content = format_bad_arguments(capability, dict(request.arguments), e)
        except SandboxTimeoutError as e:
            status = "error"
            logger.error("Action timed out", extra={"tool": request.name, "request_id": request.id})
            content = f'FAILED TO CALL TOOL: "{request.name}"\n\n{e}'
        except Exception as e:
            status = "error"
            logger.exception("Failed to call tool", extra={"tool": request.name, "request_id": request.id})
            content = f'FAILED TO CALL TOOL: "{request.name}"\n\n{e}'

        truncated_content, truncated = truncate_output(content, self._max_output_chars)
        return ActionResult(
            request_id=request.id,
            name=request.name,
            status=status,  # type: ignore[arg-type]
            content=truncated_content,
            truncated=truncated,
        )
