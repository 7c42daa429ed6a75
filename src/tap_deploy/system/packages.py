"""Ensure OS packages are present."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Sequence

from tap_deploy.config import PackageManagerName
from tap_deploy.system.commands import Runner

LOGGER = logging.getLogger(__name__)

PackageStatus = Literal["success", "already_satisfied", "failed"]

_PROBE_COMMANDS: dict[PackageManagerName, list[str]] = {
    "apt": ["dpkg", "-s"],
    "dnf": ["rpm", "-q"],
    "yum": ["rpm", "-q"],
}

_INSTALL_COMMANDS: dict[PackageManagerName, list[str]] = {
    "apt": ["apt-get", "install", "-y", "--no-install-recommends"],
    "dnf": ["dnf", "install", "-y"],
    "yum": ["yum", "install", "-y"],
}


@dataclass(frozen=True, slots=True)
class PackageOutcome:
    """Result of an ensure-present call."""

    status: PackageStatus
    installed: tuple[str, ...] = ()
    reason: str | None = None


def missing_packages(
    packages: Sequence[str],
    *,
    manager: PackageManagerName,
    runner: Runner,
    timeout_sec: float | None = None,
) -> list[str]:
    """Return the subset of packages the probe reports as not installed."""

    probe = _PROBE_COMMANDS[manager]
    return [
        package
        for package in packages
        if not runner.run([*probe, package], timeout_sec=timeout_sec).ok
    ]


def ensure_packages(
    packages: Sequence[str],
    *,
    manager: PackageManagerName = "apt",
    runner: Runner,
    timeout_sec: float | None = None,
    logger: logging.Logger | None = None,
) -> PackageOutcome:
    """Install any missing packages; idempotent."""

    effective_logger = logger or LOGGER
    missing = missing_packages(packages, manager=manager, runner=runner, timeout_sec=timeout_sec)
    if not missing:
        effective_logger.info("packages.already_satisfied count=%s", len(packages))
        return PackageOutcome(status="already_satisfied")

    result = runner.run([*_INSTALL_COMMANDS[manager], *missing], timeout_sec=timeout_sec)
    if not result.ok:
        reason = result.failure_reason()
        effective_logger.error("packages.install_failed missing=%s reason=%s", missing, reason)
        return PackageOutcome(status="failed", reason=reason)

    effective_logger.info("packages.installed packages=%s", missing)
    return PackageOutcome(status="success", installed=tuple(missing))
