"""File viewing and editing capabilities."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator

from swe_orchestrator.orchestrator.sandbox.executor import SessionContext
from .base import Capability, CapabilityArgs, ToolOutput


def _number_lines(text: str, start: int = 1) -> str:
    lines = text.splitlines()
    return "\n".join(f"{start + offset}: {line}" for offset, line in enumerate(lines))


def _slice_lines(text: str, view_range: tuple[int, int] | None) -> tuple[str, int]:
    if view_range is None:
        return text, 1
    start, end = view_range
    lines = text.splitlines()
    # -1 means "to the end of the file".
    stop = len(lines) if end == -1 else end
    return "\n".join(lines[start - 1 : stop]), start


class ViewArgs(CapabilityArgs):
    path: str = Field(min_length=1)
    view_range: tuple[int, int] | None = Field(
        default=None, description="1-based inclusive [start, end]; end may be -1"
    )

    @model_validator(mode="after")
    def _check_range(self) -> ViewArgs:
        if self.view_range is not None:
            start, end = self.view_range
            if start < 1 or (end != -1 and end < start):
                raise ValueError("view_range must be [start, end] with 1 <= start <= end (or end == -1)")
        return self


class ViewCapability(Capability):
    name = "view"
    description = "View the contents of a file, optionally limited to a line range."
    args_model = ViewArgs

    def run(self, args: ViewArgs, session: SessionContext) -> ToolOutput:
        content = self._executor.read_file(args.path, session=session)
        text, start = _slice_lines(content, args.view_range)
        return ToolOutput(result=_number_lines(text, start))


class EditArgs(CapabilityArgs):
    command: Literal["view", "create", "str_replace", "insert"]
    path: str = Field(min_length=1)
    file_text: str | None = None
    old_str: str | None = None
    new_str: str | None = None
    insert_line: int | None = Field(default=None, ge=0)
    view_range: tuple[int, int] | None = None

    @model_validator(mode="after")
    def _check_command_arguments(self) -> EditArgs:
        if self.command == "create" and self.file_text is None:
            raise ValueError("file_text is required for create")
        if self.command == "str_replace" and (self.old_str is None or self.new_str is None):
            raise ValueError("old_str and new_str are required for str_replace")
        if self.command == "insert" and (self.insert_line is None or self.new_str is None):
            raise ValueError("insert_line and new_str are required for insert")
        return self


class EditCapability(Capability):
    name = "text_editor"
    description = (
        "View, create and edit files. Commands: view, create, str_replace (replace one exact "
        "occurrence of old_str with new_str), insert (insert new_str after insert_line)."
    )
    args_model = EditArgs

    def run(self, args: EditArgs, session: SessionContext) -> ToolOutput:
        if args.command == "view":
            content = self._executor.read_file(args.path, session=session)
            text, start = _slice_lines(content, args.view_range)
            return ToolOutput(result=_number_lines(text, start))

        if args.command == "create":
            self._executor.write_file(args.path, args.file_text or "", session=session)
            return ToolOutput(result=f"Successfully created file {args.path}.")

        content = self._executor.read_file(args.path, session=session)

        if args.command == "str_replace":
            assert args.old_str is not None and args.new_str is not None
            occurrences = content.count(args.old_str)
            if occurrences == 0:
                return ToolOutput(
                    result=f"No match found for replacement text in {args.path}.", status="error"
                )
            if occurrences > 1:
                return ToolOutput(
                    result=(
                        f"Found {occurrences} matches for replacement text in {args.path}. "
                        "Provide more context so the match is unique."
                    ),
                    status="error",
                )
            self._executor.write_file(
                args.path, content.replace(args.old_str, args.new_str, 1), session=session
            )
            return ToolOutput(result=f"Successfully replaced text in {args.path}.")

        assert args.insert_line is not None and args.new_str is not None
        lines = content.splitlines(keepends=True)
        if args.insert_line > len(lines):
            return ToolOutput(
                result=f"insert_line {args.insert_line} is past the end of {args.path} ({len(lines)} lines).",
                status="error",
            )
        inserted = args.new_str if args.new_str.endswith("\n") else args.new_str + "\n"
        if args.insert_line and not lines[args.insert_line - 1].endswith("\n"):
            inserted = "\n" + inserted
        lines.insert(args.insert_line, inserted)
        self._executor.write_file(args.path, "".join(lines), session=session)
        return ToolOutput(result=f"Successfully inserted text into {args.path} after line {args.insert_line}.")
