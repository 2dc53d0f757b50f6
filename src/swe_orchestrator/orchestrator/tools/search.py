from __future__ import annotations

import shlex

from pydantic import Field

from swe_orchestrator.orchestrator.sandbox.executor import SessionContext
from .base import Capability, CapabilityArgs, ToolOutput

# ripgrep exits with 1 when nothing matched.
_RG_NO_MATCHES = 1


class SearchArgs(CapabilityArgs):
    query: str = Field(min_length=1, description="Pattern to search for")
    match_string: bool = Field(
        default=False, description="Treat the query as a literal string instead of a regex"
    )
    case_sensitive: bool = False
    context_lines: int = Field(default=0, ge=0, le=20)
    include_files: str | None = Field(default=None, description="Glob restricting searched files")
    exclude_files: str | None = Field(default=None, description="Glob of files to skip")
    max_results: int = Field(default=0, ge=0, description="Per-file match limit (0 = unlimited)")

    def to_command(self) -> str:
        parts = ["rg", "--line-number", "--color=never", "--hidden", "--glob", "!.git"]
        if not self.case_sensitive:
            parts.append("-i")
        if self.match_string:
            parts.append("--fixed-strings")
        if self.context_lines:
            parts.extend(["-C", str(self.context_lines)])
        if self.include_files:
            parts.extend(["--glob", self.include_files])
        if self.exclude_files:
            parts.extend(["--glob", f"!{self.exclude_files}"])
        if self.max_results:
            parts.extend(["--max-count", str(self.max_results)])
        parts.extend(["--", self.query, "."])
        return shlex.join(parts)


class SearchCapability(Capability):
    name = "grep"
    description = "Search the repository with ripgrep."
    args_model = SearchArgs

    def run(self, args: SearchArgs, session: SessionContext) -> ToolOutput:
        result = self._executor.run_command(
            args.to_command(), session=session, timeout=self._timeout_seconds
        )
        if result.exit_code == _RG_NO_MATCHES and not result.output.strip():
            return ToolOutput(result="No results found.", exit_code=result.exit_code)
        if result.exit_code not in (0, _RG_NO_MATCHES):
            return ToolOutput(
                result=f"Search command failed. Exit code: {result.exit_code}\n{result.output}",
                status="error",
                exit_code=result.exit_code,
            )
        return ToolOutput(result=result.output, exit_code=result.exit_code)
