"""Subprocess execution with bounded timeouts."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol, Sequence

LOGGER = logging.getLogger(__name__)

OUTPUT_TAIL_CHARS = 2000


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_sec: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def failure_reason(self) -> str:
        """Short human-readable reason for a failed command."""

        command = " ".join(self.args)
        if self.timed_out:
            return f"'{command}' timed out after {self.duration_sec:.0f}s"
        detail = (self.stderr or self.stdout).strip().splitlines()
        last_line = detail[-1] if detail else ""
        return f"'{command}' exited with {self.returncode}" + (f": {last_line}" if last_line else "")


class Runner(Protocol):
    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout_sec: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult: ...


class CommandRunner:
    """Run commands with ``subprocess.run``; never raises for a failed command."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout_sec: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        argv = tuple(str(arg) for arg in args)
        merged_env = None
        if env:
            merged_env = dict(os.environ)
            merged_env.update(env)

        self._logger.debug("command.start args=%s cwd=%s timeout_sec=%s", argv, cwd, timeout_sec)
        started = time.monotonic()
        try:
            completed = subprocess.run(
                argv,
                cwd=str(cwd) if cwd is not None else None,
                env=merged_env,
                capture_output=True,
                text=True,
                timeout=timeout_sec,
            )
        except subprocess.TimeoutExpired as exc:
            elapsed = time.monotonic() - started
            self._logger.warning("command.timeout args=%s elapsed_sec=%.2f", argv, elapsed)
            return CommandResult(
                args=argv,
                returncode=-1,
                stdout=_tail(exc.stdout),
                stderr=_tail(exc.stderr),
                duration_sec=elapsed,
                timed_out=True,
            )
        except FileNotFoundError as exc:
            # Missing executable or cwd
            elapsed = time.monotonic() - started
            self._logger.warning("command.not_found args=%s error=%s", argv, exc)
            return CommandResult(args=argv, returncode=127, stderr=str(exc), duration_sec=elapsed)

        elapsed = time.monotonic() - started
        self._logger.debug("command.finish args=%s returncode=%s elapsed_sec=%.2f", argv, completed.returncode, elapsed)
        return CommandResult(
            args=argv,
            returncode=completed.returncode,
            stdout=_tail(completed.stdout),
            stderr=_tail(completed.stderr),
            duration_sec=elapsed,
        )


def _tail(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return value[-OUTPUT_TAIL_CHARS:]
