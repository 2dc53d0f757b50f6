"""Sandbox executors: where requested actions actually run.

Two implementations share one small interface:

- `LocalSandboxExecutor` runs commands with `subprocess` inside a root
  directory (local mode).
- `RemoteSandboxExecutor` forwards commands to a sandbox service over HTTP.

Both enforce a per-invocation timeout and raise `SandboxTimeoutError` when it
elapses.
"""

from __future__ import annotations

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 2_000_000


class SandboxError(RuntimeError):
    pass


class SandboxTimeoutError(SandboxError):
    pass


class SandboxPathError(SandboxError):
    pass


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Per-run execution context shared by every action of a batch.

    Instances are immutable and therefore safe to share between the worker
    threads of one dispatch.
    """

    session_id: str
    local_mode: bool = False
    workdir: str = "."
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CommandResult:
    output: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class SandboxExecutor(ABC):
    @abstractmethod
    def run_command(
        self,
        command: str,
        *,
        session: SessionContext,
        workdir: str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a shell command and return its combined output and exit code.

        Raises:
            SandboxTimeoutError: If the command did not finish within `timeout`.
            SandboxError: If the sandbox could not run the command at all.
        """

    @abstractmethod
    def read_file(self, path: str, *, session: SessionContext) -> str: ...

    @abstractmethod
    def write_file(self, path: str, content: str, *, session: SessionContext) -> None: ...


def _coerce_stream(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class LocalSandboxExecutor(SandboxExecutor):
    """Run actions on the local filesystem, confined to `root`."""

    def __init__(self, root: Path | str, *, default_timeout_seconds: float = 120.0) -> None:
        resolved = Path(root).resolve()
        if not resolved.is_dir():
            raise NotADirectoryError(f"{resolved!s} is not a directory")
        if default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0")
        self._root = resolved
        self._default_timeout_seconds = float(default_timeout_seconds)

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, path: str | Path, *, session: SessionContext | None = None) -> Path:
        base = self._root / (session.workdir if session is not None else ".")
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = base / candidate
        candidate = candidate.resolve()
        if not candidate.is_relative_to(self._root):
            raise SandboxPathError(f"Path {str(path)!r} is outside the sandbox root {self._root!s}")
        return candidate

    def run_command(
        self,
        command: str,
        *,
        session: SessionContext,
        workdir: str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        if not command.strip():
            raise ValueError("command must not be empty")
        cwd = self.resolve(workdir or ".", session=session)
        effective_timeout = self._default_timeout_seconds if timeout is None else float(timeout)

        run_env = dict(os.environ)
        run_env.update(session.env)
        if env:
            run_env.update(env)

        logger.debug("Running local command", extra={"command": command, "cwd": str(cwd)})
        try:
            completed = subprocess.run(
                command,
                shell=True,
                cwd=cwd,
                check=False,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=effective_timeout,
                env=run_env,
            )
        except subprocess.TimeoutExpired as e:
            partial = _coerce_stream(e.stdout)
            raise SandboxTimeoutError(
                f"Command timed out after {effective_timeout:g}s: {command}\n{partial}".rstrip()
            ) from e

        return CommandResult(output=completed.stdout or "", exit_code=completed.returncode)

    def read_file(self, path: str, *, session: SessionContext) -> str:
        target = self.resolve(path, session=session)
        if not target.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        if target.stat().st_size > MAX_FILE_BYTES:
            raise SandboxError(f"File is too large to read: {path}")
        return target.read_text(encoding="utf-8", errors="replace")

    def write_file(self, path: str, content: str, *, session: SessionContext) -> None:
        target = self.resolve(path, session=session)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")


class RemoteSandboxExecutor(SandboxExecutor):
    """Forward actions to a sandbox service.

    The service exposes one resource per session:

    - ``POST {base}/sessions/{id}/commands`` -> ``{"output": str, "exit_code": int}``
    - ``GET {base}/sessions/{id}/files?path=...`` -> ``{"content": str}``
    - ``PUT {base}/sessions/{id}/files`` with ``{"path": str, "content": str}``
    """

    def __init__(
        self,
        base_url: str,
        *,
        default_timeout_seconds: float = 120.0,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url.strip():
            raise ValueError("Sandbox base URL is required")
        self._base_url = base_url.rstrip("/")
        self._default_timeout_seconds = float(default_timeout_seconds)
        self._http = session or requests.Session()
        self._http.headers.update({"User-Agent": "swe-orchestrator"})

    def _session_url(self, session: SessionContext, suffix: str) -> str:
        if not session.session_id:
            raise SandboxError("A sandbox session id is required for remote execution")
        return f"{self._base_url}/sessions/{session.session_id}/{suffix.lstrip('/')}"

    def run_command(
        self,
        command: str,
        *,
        session: SessionContext,
        workdir: str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        effective_timeout = self._default_timeout_seconds if timeout is None else float(timeout)
        payload: dict[str, Any] = {
            "command": command,
            "workdir": workdir or session.workdir,
            "timeout": effective_timeout,
            "env": {**session.env, **(env or {})},
        }
        try:
            # Allow the service a little slack over the command's own timeout.
            resp = self._http.post(
                self._session_url(session, "commands"), json=payload, timeout=effective_timeout + 10
            )
        except requests.Timeout as e:
            raise SandboxTimeoutError(f"Command timed out after {effective_timeout:g}s: {command}") from e
        except requests.RequestException as e:
            raise SandboxError(f"Sandbox request failed: {e}") from e

        if resp.status_code == 408:
            raise SandboxTimeoutError(f"Command timed out after {effective_timeout:g}s: {command}")
        resp.raise_for_status()
        data: dict[str, Any] = resp.json()
        exit_code = data.get("exit_code")
        return CommandResult(
            output=str(data.get("output") or ""),
            exit_code=exit_code if isinstance(exit_code, int) else 1,
        )

    def read_file(self, path: str, *, session: SessionContext) -> str:
        resp = self._http.get(
            self._session_url(session, "files"), params={"path": path}, timeout=30
        )
        if resp.status_code == 404:
            raise FileNotFoundError(f"File not found: {path}")
        resp.raise_for_status()
        data: dict[str, Any] = resp.json()
        return str(data.get("content") or "")

    def write_file(self, path: str, content: str, *, session: SessionContext) -> None:
        resp = self._http.put(
            self._session_url(session, "files"),
            json={"path": path, "content": content},
            timeout=30,
        )
        resp.raise_for_status()
