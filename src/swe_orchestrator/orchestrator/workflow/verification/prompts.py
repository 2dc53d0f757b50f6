"""Prompt text and transcript-to-message conversion for the verification phases."""

from __future__ import annotations

import json
from collections.abc import Iterable

from swe_orchestrator.llm.provider import Message
from swe_orchestrator.orchestrator.workflow.state import EntryOrigin, Marker, TranscriptEntry, WorkflowState

TEST_PLAN_PROMPT = """You are the testing assistant of an automated software engineering agent.

Phase: test plan generation.

Another assistant has implemented a change in the repository below. Study the
changed files and the completed tasks, then write a concrete, prioritised test
plan: which behaviours need unit, integration or end-to-end coverage, which edge
cases matter, and which tools to use (Playwright for browser flows, the
project's own test framework otherwise). Respond with the plan only.

{context}
"""

WRITING_PROMPT = """You are the testing assistant of an automated software engineering agent.

Phase: writing tests.

Implement the test plan below by creating or editing test files with the
available tools. Request several independent actions at once when you can.
When the tests are written, reply without requesting any action.

Test plan:
{test_plan}

{context}
"""

EXECUTION_PROMPT = """You are the testing assistant of an automated software engineering agent.

Phase: running tests.

Run the tests that were written for this change and report what happened. Use
the shell or Playwright tools to execute them; do not edit files in this phase.
When there is nothing left to run, reply without requesting any action.

{context}
"""

DIAGNOSIS_PROMPT = """You are a testing expert diagnosing test failures and errors.

Repository: {repository}
Branch: {branch}
Attempts: {attempts}/{max_retries}

Recent errors:
{errors}

Test results:
{results}

Identify the root causes, say whether they are environment or code related,
and suggest specific fixes to the tests or their setup.
{closing}
"""

CONVERSATION_PREAMBLE = (
    "Here is the conversation history of the programmer, including the user's input.\n"
    "If it has been truncated, consider only the most recent messages.\n\n"
    "<conversation_history>\n{history}\n</conversation_history>"
)


def format_plan(state: WorkflowState) -> str:
    if not state.plan_items:
        return "No task plan available."
    lines = []
    for index, item in enumerate(state.plan_items, start=1):
        marker = "x" if item.completed else " "
        line = f"{index}. [{marker}] {item.description}"
        if item.summary:
            line += f"\n   Summary: {item.summary}"
        lines.append(line)
    return "\n".join(lines)


def format_context(state: WorkflowState) -> str:
    changed = "\n".join(state.changed_files) or "(none)"
    return (
        "<context>\n"
        f"Repository: {state.target_repository.full_name}\n"
        f"Branch: {state.branch_name}\n"
        f"Dependencies installed: {'Yes' if state.dependencies_installed else 'No'}\n\n"
        f"Codebase structure:\n{state.codebase_tree or 'No codebase tree generated yet.'}\n\n"
        f"Changed files:\n{changed}\n\n"
        f"Task plan and completed tasks:\n{format_plan(state)}\n"
        "</context>"
    )


def latest_test_plan(state: WorkflowState) -> str:
    plans = state.entries_with(Marker.TEST_PLAN)
    return plans[-1].content if plans else "No test plan available."


def format_conversation(state: WorkflowState) -> str:
    history = "\n".join(f"[{entry.origin.value}] {entry.content}" for entry in state.conversation)
    return CONVERSATION_PREAMBLE.format(history=history or "(empty)")


def _agent_message(entry: TranscriptEntry) -> Message:
    message: Message = {"role": "assistant", "content": entry.content}
    if entry.action_requests:
        message["tool_calls"] = [
            {
                "id": request.id,
                "type": "function",
                "function": {"name": request.name, "arguments": json.dumps(request.arguments)},
            }
            for request in entry.action_requests
        ]
    return message


def _entry_message(entry: TranscriptEntry) -> Message:
    if entry.origin == EntryOrigin.AGENT:
        return _agent_message(entry)
    if entry.origin == EntryOrigin.TOOL_RESULT:
        assert entry.result is not None
        return {"role": "tool", "tool_call_id": entry.result.request_id, "content": entry.content}
    if entry.origin == EntryOrigin.HUMAN:
        return {"role": "user", "content": entry.content}
    return {"role": "assistant", "content": entry.content}


def transcript_messages(entries: Iterable[TranscriptEntry]) -> list[Message]:
    """Convert transcript entries to chat messages.

    An entry that reuses an earlier entry's id (a request batch rewritten by
    the safety filter) replaces the earlier one in place. Hidden entries are
    not shown to the model.
    """

    ordered: dict[str, TranscriptEntry] = {}
    for entry in entries:
        if entry.has(Marker.HIDDEN):
            continue
        ordered[entry.id] = entry
    return [_entry_message(entry) for entry in ordered.values()]


def error_excerpts(entries: Iterable[TranscriptEntry]) -> str:
    return "\n\n".join(
        entry.content for entry in entries if entry.has(Marker.ERROR) or "Error" in entry.content
    )
