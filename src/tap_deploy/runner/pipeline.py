"""Market-by-market deployment orchestration."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence
from uuid import uuid4

from tap_deploy.config import AppSettings, RepositoryConfig
from tap_deploy.deps.cache import CacheGuard
from tap_deploy.deps.installer import DependencyInstaller
from tap_deploy.errors import (
    BuildFailed,
    ConfigurationError,
    DependencyInstallFailed,
    DeployError,
    PreflightFailed,
    SourceSyncFailed,
)
from tap_deploy.markets.paths import check_path_collisions, resolve_all_paths
from tap_deploy.models import (
    BuildResult,
    DeploymentPaths,
    InstallResult,
    MarketHealth,
    MarketResult,
    PublishResult,
    VerificationReport,
)
from tap_deploy.release.publisher import ReleasePublisher
from tap_deploy.runner.state import MarketStateMachine, RunCancellation
from tap_deploy.system.commands import CommandRunner, Runner
from tap_deploy.system.git_sync import ensure_checkout
from tap_deploy.system.packages import ensure_packages
from tap_deploy.system.preflight import check_disk_space
from tap_deploy.system.services import ServiceManager, ServiceManagerLike
from tap_deploy.utils.io import write_json_atomically, write_parquet_atomically
from tap_deploy.utils.time_utils import now_utc
from tap_deploy.verify.health import HealthVerifier
from tap_deploy.verify.reports import build_run_summary, format_market_line, market_results_df

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeployRunOptions:
    """Runtime options for a deployment run."""

    markets: tuple[str, ...] = ()
    version: str | None = None
    skip_git: bool = False
    skip_system: bool = False
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class DeployRunResult:
    """Return object for deployment run outcomes."""

    run_id: str
    version: str
    results: tuple[MarketResult, ...]
    summary: dict[str, Any]
    summary_path: Path
    market_results_path: Path | None

    @property
    def any_failed(self) -> bool:
        return any(result.status == "FAILED" for result in self.results)


def validate_version_label(version: str, pointer_name: str) -> str:
    """Reject labels that cannot safely name a release directory."""

    label = version.strip()
    if not label or label in {".", ".."} or label.startswith(".") or "/" in label or "\\" in label:
        raise ConfigurationError(f"invalid release version label: {version!r}")
    if label == pointer_name:
        raise ConfigurationError(f"release version must differ from pointer name {pointer_name!r}")
    return label


def select_markets(configured: Sequence[str], requested: Sequence[str]) -> list[str]:
    """Filter configured markets by the requested subset, keeping configured order."""

    if not requested:
        return list(configured)
    requested_normalized = {code.strip().lower() for code in requested}
    unknown = sorted(requested_normalized.difference(configured))
    if unknown:
        raise ConfigurationError(f"unknown market(s): {', '.join(unknown)}")
    return [code for code in configured if code in requested_normalized]


def classify_health(
    *,
    status: str,
    installs: Sequence[InstallResult],
    build: BuildResult | None,
    publish: PublishResult | None,
    verification: VerificationReport | None,
) -> MarketHealth:
    """Map a market outcome onto healthy / degraded / failed."""

    if status != "DONE":
        return "failed"
    if publish is not None and publish.emergency_fallback_used:
        return "degraded"
    if any(install.status != "SUCCEEDED" for install in installs):
        return "degraded"
    if build is not None and build.status != "SUCCEEDED":
        return "degraded"
    if verification is not None and not verification.healthy:
        return "degraded"
    return "healthy"


class MarketRunner:
    """Runs install -> publish -> verify for each market, isolating failures."""

    def __init__(
        self,
        settings: AppSettings,
        *,
        version: str,
        runner: Runner,
        service_manager: ServiceManagerLike | None = None,
        cancellation: RunCancellation | None = None,
        sync_sources: bool = True,
        installer: DependencyInstaller | None = None,
        publisher: ReleasePublisher | None = None,
        verifier: HealthVerifier | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.version = version
        self.runner = runner
        self.service_manager = service_manager
        self.cancellation = cancellation or RunCancellation()
        self.sync_sources = sync_sources
        self.logger = logger or LOGGER
        self.installer = installer or DependencyInstaller(
            settings.dependencies,
            runner=runner,
            cache_guard=CacheGuard(settings.dependencies.cache_mode),
            logger=self.logger,
        )
        self.publisher = publisher or ReleasePublisher(
            keep_releases=settings.release.keep_releases,
            logger=self.logger,
        )
        self.verifier = verifier or HealthVerifier(
            service_manager=service_manager,
            dependency_manifest_name=settings.dependencies.lock_file_name,
            logger=self.logger,
        )

    def resolve(self, markets: Sequence[str]) -> dict[str, DeploymentPaths]:
        resolved = resolve_all_paths(
            markets,
            self.version,
            paths_config=self.settings.paths,
            release_config=self.settings.release,
            cache_mode=self.settings.dependencies.cache_mode,
        )
        collisions = check_path_collisions(resolved)
        if collisions:
            raise ConfigurationError(f"market paths collide: {collisions}")
        return resolved

    def run(self, markets: Sequence[str]) -> list[MarketResult]:
        """Process markets in order; results are always in configured order."""

        resolved = self.resolve(markets)
        max_workers = min(self.settings.markets.max_workers, max(1, len(markets)))
        if max_workers <= 1:
            return [self._run_or_skip(resolved[market]) for market in markets]

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="market") as pool:
            futures = [pool.submit(self._run_or_skip, resolved[market]) for market in markets]
            return [future.result() for future in futures]

    def _run_or_skip(self, paths: DeploymentPaths) -> MarketResult:
        if self.cancellation.is_cancelled():
            self.logger.warning("deploy_run.market_skipped market=%s reason=%s", paths.market, self.cancellation.reason)
            return MarketResult(
                market=paths.market,
                status="SKIPPED",
                health="failed",
                stage_history=("PENDING",),
                reason=self.cancellation.reason or "cancelled",
            )
        return self.run_market(paths)

    def run_market(self, paths: DeploymentPaths) -> MarketResult:
        """Deploy one market.

        Errors scoped to the market become a FAILED result; only run-scoped
        errors (``ConfigurationError``) propagate.
        """

        market = paths.market
        machine = MarketStateMachine(market)
        started = time.monotonic()
        warnings: list[str] = []
        installs: list[InstallResult] = []
        build: BuildResult | None = None
        publish: PublishResult | None = None

        self.logger.info("deploy_run.market_start market=%s version=%s", market, self.version)
        try:
            machine.advance("INSTALLING")
            self._preflight(paths)
            if self.sync_sources:
                warnings.extend(self._sync_sources(paths))

            backend = self.installer.install_backend_deps(paths.backend_dir, paths.backend_cache_dir)
            installs.append(backend)
            if backend.status == "FAILED":
                _record_warning(DependencyInstallFailed(_last_reason(backend), market=market), warnings)

            frontend = self.installer.install_frontend_deps(paths.frontend_dir, paths.frontend_cache_dir)
            installs.append(frontend)
            if frontend.status == "FAILED":
                _record_warning(DependencyInstallFailed(_last_reason(frontend), market=market), warnings)

            build = self.installer.build_frontend(
                paths.frontend_dir,
                self.settings.dependencies.build_memory_limit_bytes,
                output_dir=paths.version_dir,
            )
            if build.status == "FAILED":
                _record_warning(BuildFailed(_last_reason(build), market=market), warnings)

            machine.advance("PUBLISHING")
            publish = self.publisher.publish(paths, self.version)
            if publish.emergency_fallback_used:
                warnings.append("emergency placeholder content published")
        except DeployError as exc:
            if exc.fatal_to == "run":
                self.logger.error("deploy_run.aborted market=%s reason=%s", market, exc.reason)
                raise
            return self._failed(machine, started, exc.reason, warnings, installs, build, publish)
        except Exception as exc:
            self.logger.exception("deploy_run.market_unexpected_error market=%s", market)
            return self._failed(
                machine,
                started,
                f"{type(exc).__name__}: {exc}",
                warnings,
                installs,
                build,
                publish,
            )

        machine.advance("VERIFYING")
        verification = self.verifier.verify(
            market,
            paths,
            self.version,
            self.settings.system.services,
            publish_result=publish,
        )
        machine.advance("DONE")

        health = classify_health(
            status="DONE",
            installs=installs,
            build=build,
            publish=publish,
            verification=verification,
        )
        result = MarketResult(
            market=market,
            status="DONE",
            health=health,
            stage_history=tuple(machine.history),
            duration_sec=time.monotonic() - started,
            warnings=tuple(warnings),
            installs=tuple(installs),
            build=build,
            publish=publish,
            verification=verification,
        )
        self.logger.info("deploy_run.market_done %s", format_market_line(result))
        return result

    def _failed(
        self,
        machine: MarketStateMachine,
        started: float,
        reason: str,
        warnings: list[str],
        installs: list[InstallResult],
        build: BuildResult | None,
        publish: PublishResult | None,
    ) -> MarketResult:
        failed_stage = machine.fail()
        result = MarketResult(
            market=machine.market,
            status="FAILED",
            health="failed",
            stage_history=tuple(machine.history),
            duration_sec=time.monotonic() - started,
            failed_stage=failed_stage,
            reason=reason,
            warnings=tuple(warnings),
            installs=tuple(installs),
            build=build,
            publish=publish,
        )
        self.logger.error(
            "deploy_run.market_failed market=%s stage=%s reason=%s",
            machine.market,
            failed_stage,
            reason,
        )
        return result

    def _preflight(self, paths: DeploymentPaths) -> None:
        minimum = self.settings.system.min_free_disk_bytes
        if minimum <= 0:
            return
        for location in (paths.backend_dir, paths.frontend_dir):
            disk = check_disk_space(location, minimum)
            if not disk.ok:
                raise PreflightFailed(
                    f"free disk {disk.free_bytes} bytes below minimum {minimum} at {location}",
                    market=paths.market,
                )

    def _sync_sources(self, paths: DeploymentPaths) -> list[str]:
        """Sync enabled checkouts. A failed sync over an existing checkout is a warning."""

        warnings: list[str] = []
        repositories: tuple[tuple[str, RepositoryConfig, Path], ...] = (
            ("backend", self.settings.repositories.backend, paths.backend_dir),
            ("frontend", self.settings.repositories.frontend, paths.frontend_dir),
        )
        for component, repository, checkout in repositories:
            if not repository.enabled or not repository.remote:
                continue
            outcome = ensure_checkout(
                checkout,
                repository.remote,
                repository.branch,
                runner=self.runner,
                timeout_sec=self.settings.system.command_timeout_sec,
                logger=self.logger,
            )
            if outcome.ok:
                continue
            if not checkout.is_dir():
                raise SourceSyncFailed(f"{component} checkout unavailable: {outcome.reason}", market=paths.market)
            warnings.append(f"{component} source sync failed, deploying existing checkout: {outcome.reason}")
        return warnings


def _record_warning(error: DeployError, warnings: list[str]) -> None:
    """Keep a non-fatal error as a market warning; re-raise anything fatal."""

    if error.fatal_to != "none":
        raise error
    warnings.append(error.reason)


def _last_reason(result: InstallResult | BuildResult) -> str:
    for outcome in reversed(result.outcomes):
        if outcome.reason:
            return outcome.reason
    return "all strategies failed"


def prepare_host(
    settings: AppSettings,
    *,
    runner: Runner,
    service_manager: ServiceManagerLike,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    """Ensure OS packages and services. Failures are reported, never raised."""

    effective_logger = logger or LOGGER
    report: dict[str, Any] = {"packages": None, "services": {}}
    if settings.system.manage_packages and settings.system.packages:
        outcome = ensure_packages(
            settings.system.packages,
            manager=settings.system.package_manager,
            runner=runner,
            timeout_sec=settings.system.command_timeout_sec,
            logger=effective_logger,
        )
        report["packages"] = {"status": outcome.status, "installed": list(outcome.installed), "reason": outcome.reason}
    if settings.system.manage_services:
        for service in settings.system.services:
            service_outcome = service_manager.ensure_running(service)
            report["services"][service] = {"ok": service_outcome.ok, "reason": service_outcome.reason}
    return report


def run_deploy_pipeline(
    settings: AppSettings,
    *,
    options: DeployRunOptions | None = None,
    logger: logging.Logger | None = None,
    runner: Runner | None = None,
    service_manager: ServiceManagerLike | None = None,
    cancellation: RunCancellation | None = None,
) -> DeployRunResult:
    """Run a deployment over the configured markets and persist the summary."""

    effective_logger = logger or LOGGER
    run_options = options or DeployRunOptions()
    effective_runner = runner or CommandRunner(logger=effective_logger)
    effective_services = service_manager or ServiceManager(
        effective_runner,
        timeout_sec=settings.system.command_timeout_sec,
        logger=effective_logger,
    )
    effective_cancellation = cancellation or RunCancellation()

    version = validate_version_label(
        run_options.version or settings.release.effective_version(),
        settings.release.pointer_name,
    )
    markets = select_markets(settings.markets.codes, run_options.markets)
    if not markets:
        raise ConfigurationError("no markets selected")

    run_id = f"deploy-run-{uuid4().hex[:12]}"
    started_ts = now_utc()
    started_mono = time.monotonic()

    market_runner = MarketRunner(
        settings,
        version=version,
        runner=effective_runner,
        service_manager=effective_services,
        cancellation=effective_cancellation,
        sync_sources=not run_options.skip_git,
        logger=effective_logger,
    )
    resolved = market_runner.resolve(markets)

    effective_logger.info(
        "deploy_run.start run_id=%s version=%s markets=%s max_workers=%s cache_mode=%s dry_run=%s",
        run_id,
        version,
        markets,
        settings.markets.max_workers,
        settings.dependencies.cache_mode,
        run_options.dry_run,
    )

    host_setup: dict[str, Any] | None = None
    results: list[MarketResult] = []
    if run_options.dry_run:
        for market in markets:
            effective_logger.info("deploy_run.plan market=%s paths=%s", market, resolved[market].as_dict())
    else:
        if not run_options.skip_system:
            host_setup = prepare_host(
                settings,
                runner=effective_runner,
                service_manager=effective_services,
                logger=effective_logger,
            )
        results = market_runner.run(markets)

    finished_ts = now_utc()
    duration_sec = time.monotonic() - started_mono

    artifacts_dir = settings.paths.artifacts_root / "run_summaries"
    summary_path = artifacts_dir / f"{run_id}_deploy_run_summary.json"
    market_results_path = artifacts_dir / f"{run_id}_market_results.parquet"

    summary: dict[str, Any] = {
        "run_id": run_id,
        "version": version,
        "started_ts": started_ts.isoformat(),
        "finished_ts": finished_ts.isoformat(),
        "duration_sec": round(duration_sec, 3),
        "dry_run": run_options.dry_run,
        "cancelled": effective_cancellation.is_cancelled(),
        "markets_selected": markets,
        "cache_mode": settings.dependencies.cache_mode,
        "lock_file_policy": settings.dependencies.lock_file_policy,
        "host_setup": host_setup,
        "paths": {market: resolved[market].as_dict() for market in markets},
        **build_run_summary(results),
        "markets": [result.as_dict() for result in results],
        "outputs": {
            "summary_path": str(summary_path),
            "market_results_path": str(market_results_path),
        },
    }
    write_json_atomically(summary, summary_path)
    write_parquet_atomically(market_results_df(results), market_results_path)

    effective_logger.info(
        "deploy_run.complete run_id=%s healthy=%s degraded=%s failed=%s skipped=%s summary_path=%s",
        run_id,
        summary["health_counts"]["healthy"],
        summary["health_counts"]["degraded"],
        summary["health_counts"]["failed"],
        len(summary["skipped_markets"]),
        summary_path,
    )

    return DeployRunResult(
        run_id=run_id,
        version=version,
        results=tuple(results),
        summary=summary,
        summary_path=summary_path,
        market_results_path=market_results_path,
    )
