"""Service manager adapter (systemd)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from tap_deploy.system.commands import CommandRunner, Runner

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ServiceOutcome:
    name: str
    ok: bool
    reason: str | None = None


class ServiceManagerLike(Protocol):
    def ensure_running(self, name: str) -> ServiceOutcome: ...

    def active_state(self, name: str) -> str: ...


class ServiceManager:
    """Thin wrapper over ``systemctl``."""

    def __init__(
        self,
        runner: Runner | None = None,
        *,
        timeout_sec: float | None = 60.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._runner = runner or CommandRunner()
        self._timeout_sec = timeout_sec
        self._logger = logger or LOGGER

    def ensure_running(self, name: str) -> ServiceOutcome:
        """Start and enable a service."""

        result = self._runner.run(["systemctl", "enable", "--now", name], timeout_sec=self._timeout_sec)
        if not result.ok:
            reason = result.failure_reason()
            self._logger.error("services.ensure_failed service=%s reason=%s", name, reason)
            return ServiceOutcome(name=name, ok=False, reason=reason)
        self._logger.info("services.running service=%s", name)
        return ServiceOutcome(name=name, ok=True)

    def active_state(self, name: str) -> str:
        """Return the systemd active state (``active``, ``inactive``, ``failed``...)."""

        result = self._runner.run(["systemctl", "is-active", name], timeout_sec=self._timeout_sec)
        state = result.stdout.strip()
        if result.timed_out or not state:
            return "unknown"
        return state
