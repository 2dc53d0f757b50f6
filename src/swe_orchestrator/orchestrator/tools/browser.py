from __future__ import annotations

import logging
import shlex
from typing import Literal

from pydantic import Field, model_validator

from swe_orchestrator.orchestrator.sandbox.executor import SessionContext
from .base import Capability, CapabilityArgs, ToolOutput

logger = logging.getLogger(__name__)

# Browser suites run considerably longer than ordinary commands.
BROWSER_TIMEOUT_MULTIPLIER = 3

_TEST_COMMANDS = frozenset({"run_tests", "run_test_file"})


class BrowserArgs(CapabilityArgs):
    command: Literal[
        "run_tests",
        "run_test_file",
        "install",
        "init",
        "codegen",
        "show_report",
        "check_config",
    ]
    test_file: str | None = Field(default=None, description="Test file for run_test_file")
    options: str | None = Field(default=None, description="Additional command line options")
    browser: Literal["chromium", "firefox", "webkit", "all"] | None = None
    headless: bool = True
    ui_mode: bool = False
    debug: bool = False

    @model_validator(mode="after")
    def _require_test_file(self) -> BrowserArgs:
        if self.command == "run_test_file" and not self.test_file:
            raise ValueError("test_file is required for run_test_file")
        return self


def build_playwright_command(args: BrowserArgs) -> str:
    project = f" --project={args.browser}" if args.browser and args.browser != "all" else ""
    extra = f" {args.options}" if args.options else ""

    if args.command == "run_tests":
        command = "npx playwright test" + project
        if not args.headless:
            command += " --headed"
        if args.ui_mode:
            command += " --ui"
        if args.debug:
            command += " --debug"
        return command + extra
    if args.command == "run_test_file":
        command = f"npx playwright test {shlex.quote(args.test_file or '')}" + project
        if not args.headless:
            command += " --headed"
        if args.debug:
            command += " --debug"
        return command + extra
    if args.command == "install":
        browser = f" {args.browser}" if args.browser and args.browser != "all" else ""
        return "npx playwright install" + browser
    if args.command == "init":
        return "npx playwright install --with-deps"
    if args.command == "codegen":
        return "npx playwright codegen" + extra
    if args.command == "show_report":
        return "npx playwright show-report"
    return "npx playwright --version && ls -la playwright.config.*"


class BrowserAutomationCapability(Capability):
    """Run Playwright end-to-end tests and related housekeeping commands."""

    name = "playwright"
    description = (
        "Execute Playwright commands for end-to-end testing: run_tests, run_test_file, install, "
        "init, codegen, show_report, check_config."
    )
    args_model = BrowserArgs

    def run(self, args: BrowserArgs, session: SessionContext) -> ToolOutput:
        command = build_playwright_command(args)
        timeout = self._timeout_seconds * BROWSER_TIMEOUT_MULTIPLIER if self._timeout_seconds else None
        logger.info("Executing Playwright command", extra={"command": command, "local_mode": session.local_mode})

        result = self._executor.run_command(
            command,
            session=session,
            timeout=timeout,
            env={
                "PLAYWRIGHT_SKIP_BROWSER_DOWNLOAD": "0" if args.ui_mode else "1",
                "CI": "true",
                "FORCE_COLOR": "0",
            },
        )

        # Test commands report failures through their output, not through an error status.
        if args.command in _TEST_COMMANDS:
            if result.exit_code != 0:
                return ToolOutput(
                    result=f"Tests completed with exit code {result.exit_code}:\n{result.output}",
                    exit_code=result.exit_code,
                )
            return ToolOutput(result=result.output, exit_code=0)

        if result.exit_code != 0:
            return ToolOutput(
                result=(
                    "Error executing Playwright command: Playwright command failed. "
                    f"Exit code: {result.exit_code}\nResult: {result.output}"
                ),
                status="error",
                exit_code=result.exit_code,
            )
        return ToolOutput(
            result=result.output
            or f"Playwright command completed successfully. Exit code: {result.exit_code}",
            exit_code=0,
        )
