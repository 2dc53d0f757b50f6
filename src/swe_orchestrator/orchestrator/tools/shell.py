from __future__ import annotations

import shlex

from pydantic import Field, field_validator

from swe_orchestrator.orchestrator.sandbox.executor import SessionContext
from .base import Capability, CapabilityArgs, ToolOutput


class ShellArgs(CapabilityArgs):
    command: list[str] | str = Field(
        description="The command to run, either as a shell string or as a list of arguments"
    )
    workdir: str | None = Field(default=None, description="Working directory for the command")
    timeout: float | None = Field(default=None, gt=0, description="Timeout in seconds")

    @field_validator("command")
    @classmethod
    def _non_empty(cls, value: list[str] | str) -> list[str] | str:
        text = value if isinstance(value, str) else " ".join(value)
        if not text.strip():
            raise ValueError("command must not be empty")
        return value

    def rendered(self) -> str:
        if isinstance(self.command, str):
            return self.command
        return shlex.join(self.command)


class ShellCapability(Capability):
    name = "shell"
    description = "Run a shell command in the repository and return its output."
    args_model = ShellArgs

    def run(self, args: ShellArgs, session: SessionContext) -> ToolOutput:
        result = self._executor.run_command(
            args.rendered(),
            session=session,
            workdir=args.workdir,
            timeout=args.timeout or self._timeout_seconds,
        )
        if result.exit_code != 0:
            return ToolOutput(
                result=f"Command failed. Exit code: {result.exit_code}\nResult: {result.output}",
                status="error",
                exit_code=result.exit_code,
            )
        return ToolOutput(result=result.output, exit_code=0)
