"""Typed records shared across the deployment stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal, Mapping

StrategyStatus = Literal["SUCCEEDED", "DEGRADED", "FAILED"]
MarketState = Literal["PENDING", "INSTALLING", "PUBLISHING", "VERIFYING", "DONE", "FAILED"]
MarketStatus = Literal["DONE", "FAILED", "SKIPPED"]
MarketHealth = Literal["healthy", "degraded", "failed"]


@dataclass(frozen=True, slots=True)
class DeploymentPaths:
    """Per-market filesystem locations for one release version."""

    market: str
    version: str
    backend_dir: Path
    frontend_dir: Path
    dist_dir: Path
    version_dir: Path
    pointer_path: Path
    backend_cache_dir: Path
    frontend_cache_dir: Path

    def as_dict(self) -> dict[str, str]:
        return {
            "market": self.market,
            "version": self.version,
            "backend_dir": str(self.backend_dir),
            "frontend_dir": str(self.frontend_dir),
            "dist_dir": str(self.dist_dir),
            "version_dir": str(self.version_dir),
            "pointer_path": str(self.pointer_path),
            "backend_cache_dir": str(self.backend_cache_dir),
            "frontend_cache_dir": str(self.frontend_cache_dir),
        }


@dataclass(frozen=True, slots=True)
class StepOutcome:
    """Outcome of one strategy in an ordered fallback chain."""

    strategy: str
    status: StrategyStatus
    reason: str | None = None
    duration_sec: float = 0.0
    returncode: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "status": self.status,
            "reason": self.reason,
            "duration_sec": round(self.duration_sec, 3),
            "returncode": self.returncode,
        }


def chain_status(outcomes: tuple[StepOutcome, ...]) -> StrategyStatus:
    """Collapse a strategy chain to its final status."""

    if not outcomes:
        return "FAILED"
    final = outcomes[-1]
    if final.status == "FAILED":
        return "FAILED"
    if any(outcome.status != "SUCCEEDED" for outcome in outcomes):
        return "DEGRADED"
    return "SUCCEEDED"


def selected_strategy(outcomes: tuple[StepOutcome, ...]) -> str | None:
    """Return the strategy that produced a usable result, if any."""

    for outcome in reversed(outcomes):
        if outcome.status != "FAILED":
            return outcome.strategy
    return None


@dataclass(frozen=True, slots=True)
class InstallResult:
    """Result of a backend or frontend dependency install."""

    component: Literal["backend", "frontend"]
    status: StrategyStatus
    used_cache: bool
    duration_sec: float
    outcomes: tuple[StepOutcome, ...] = ()

    @property
    def selected_strategy(self) -> str | None:
        return selected_strategy(self.outcomes)

    def as_dict(self) -> dict[str, Any]:
        return {
            "component": self.component,
            "status": self.status,
            "used_cache": self.used_cache,
            "duration_sec": round(self.duration_sec, 3),
            "selected_strategy": self.selected_strategy,
            "outcomes": [outcome.as_dict() for outcome in self.outcomes],
        }


@dataclass(frozen=True, slots=True)
class BuildResult:
    """Result of the frontend build step."""

    status: StrategyStatus
    duration_sec: float
    memory_limit_bytes: int
    outcomes: tuple[StepOutcome, ...] = ()

    @property
    def selected_strategy(self) -> str | None:
        return selected_strategy(self.outcomes)

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "duration_sec": round(self.duration_sec, 3),
            "memory_limit_bytes": self.memory_limit_bytes,
            "selected_strategy": self.selected_strategy,
            "outcomes": [outcome.as_dict() for outcome in self.outcomes],
        }


@dataclass(frozen=True, slots=True)
class PublishResult:
    """Outcome of publishing one market's release."""

    market: str
    version_published: str
    version_dir: Path
    pointer_path: Path
    symlink_swapped: bool
    emergency_fallback_used: bool
    placeholder_files: tuple[Path, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "market": self.market,
            "version_published": self.version_published,
            "version_dir": str(self.version_dir),
            "pointer_path": str(self.pointer_path),
            "symlink_swapped": self.symlink_swapped,
            "emergency_fallback_used": self.emergency_fallback_used,
            "placeholder_files": [str(path) for path in self.placeholder_files],
        }


@dataclass(frozen=True, slots=True)
class VerificationReport:
    """Post-publish health checks for one market. Never mutated."""

    market: str
    backend_dir_exists: bool
    frontend_dir_exists: bool
    dependency_manifest_exists: bool
    version_dir_exists: bool
    pointer_targets_version: bool
    build_output_real: bool
    service_states: Mapping[str, str] = field(default_factory=dict)
    failed_checks: tuple[str, ...] = ()
    check_errors: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "service_states", MappingProxyType(dict(self.service_states)))
        object.__setattr__(self, "check_errors", MappingProxyType(dict(self.check_errors)))

    @property
    def directories_ok(self) -> bool:
        return (
            self.backend_dir_exists
            and self.frontend_dir_exists
            and self.dependency_manifest_exists
            and self.version_dir_exists
        )

    @property
    def services_ok(self) -> bool:
        return all(state == "active" for state in self.service_states.values())

    @property
    def healthy(self) -> bool:
        return not self.failed_checks

    def as_dict(self) -> dict[str, Any]:
        return {
            "market": self.market,
            "backend_dir_exists": self.backend_dir_exists,
            "frontend_dir_exists": self.frontend_dir_exists,
            "dependency_manifest_exists": self.dependency_manifest_exists,
            "version_dir_exists": self.version_dir_exists,
            "pointer_targets_version": self.pointer_targets_version,
            "build_output_real": self.build_output_real,
            "service_states": dict(self.service_states),
            "failed_checks": list(self.failed_checks),
            "check_errors": dict(self.check_errors),
        }


@dataclass(frozen=True, slots=True)
class MarketResult:
    """Terminal per-market record consumed by the run summary."""

    market: str
    status: MarketStatus
    health: MarketHealth
    stage_history: tuple[MarketState, ...]
    duration_sec: float = 0.0
    failed_stage: MarketState | None = None
    reason: str | None = None
    warnings: tuple[str, ...] = ()
    installs: tuple[InstallResult, ...] = ()
    build: BuildResult | None = None
    publish: PublishResult | None = None
    verification: VerificationReport | None = None

    @property
    def emergency_fallback_used(self) -> bool:
        return bool(self.publish and self.publish.emergency_fallback_used)

    def as_dict(self) -> dict[str, Any]:
        return {
            "market": self.market,
            "status": self.status,
            "health": self.health,
            "stage_history": list(self.stage_history),
            "duration_sec": round(self.duration_sec, 3),
            "failed_stage": self.failed_stage,
            "reason": self.reason,
            "warnings": list(self.warnings),
            "emergency_fallback_used": self.emergency_fallback_used,
            "installs": [install.as_dict() for install in self.installs],
            "build": self.build.as_dict() if self.build else None,
            "publish": self.publish.as_dict() if self.publish else None,
            "verification": self.verification.as_dict() if self.verification else None,
        }
