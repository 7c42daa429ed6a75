"""Backend/frontend dependency installation and the frontend build."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from tap_deploy.config import DependenciesConfig
from tap_deploy.deps.cache import CacheGuard
from tap_deploy.deps.strategies import CommandStrategy, run_strategy_chain
from tap_deploy.errors import MissingLockFile
from tap_deploy.models import BuildResult, InstallResult, StepOutcome, chain_status
from tap_deploy.system.commands import Runner
from tap_deploy.utils.paths import directory_is_populated

LOGGER = logging.getLogger(__name__)


def node_memory_option(memory_limit_bytes: int) -> str:
    """Translate a byte budget into Node's ``--max-old-space-size`` (MiB)."""

    return f"--max-old-space-size={max(1, memory_limit_bytes // (1024 * 1024))}"


class DependencyInstaller:
    """Runs Composer/npm style installs and the frontend build.

    Each operation runs an ordered strategy chain: the primary command, then
    one alternate. A chain where every strategy failed comes back with status
    ``FAILED`` instead of raising, so the caller can still publish.
    """

    def __init__(
        self,
        config: DependenciesConfig,
        *,
        runner: Runner,
        cache_guard: CacheGuard | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.runner = runner
        self.cache_guard = cache_guard or CacheGuard(config.cache_mode)
        self.logger = logger or LOGGER

    def install_backend_deps(self, path: Path, cache_dir: Path) -> InstallResult:
        """Install backend dependencies from the lock file at ``path``.

        Raises ``MissingLockFile`` when the lock file is absent and the policy
        is ``fatal``; under ``warn`` the absence is recorded as a degraded
        outcome and the install proceeds.
        """

        started = time.monotonic()
        pre_outcomes: list[StepOutcome] = []
        lock_file = path / self.config.lock_file_name
        if not lock_file.is_file():
            if self.config.lock_file_policy == "fatal":
                raise MissingLockFile(f"{lock_file} not found")
            self.logger.warning("deps.backend_lock_missing path=%s policy=warn", lock_file)
            pre_outcomes.append(
                StepOutcome(strategy="lock_file_check", status="DEGRADED", reason=f"{lock_file.name} missing")
            )

        strategies = [
            CommandStrategy(name="backend_primary", args=tuple(self.config.backend_command)),
            CommandStrategy(
                name="backend_alternate",
                args=tuple(self.config.backend_alternate_command),
                degraded_reason="primary backend install failed; installed without scripts",
            ),
        ]
        with self.cache_guard.hold(cache_dir):
            used_cache = directory_is_populated(cache_dir)
            outcomes = run_strategy_chain(
                strategies,
                runner=self.runner,
                cwd=path,
                timeout_sec=self.config.install_timeout_sec,
                env={"COMPOSER_CACHE_DIR": str(cache_dir)},
                logger=self.logger,
            )

        all_outcomes = (*pre_outcomes, *outcomes)
        result = InstallResult(
            component="backend",
            status=chain_status(all_outcomes),
            used_cache=used_cache,
            duration_sec=time.monotonic() - started,
            outcomes=all_outcomes,
        )
        self.logger.info(
            "deps.backend_done path=%s status=%s strategy=%s used_cache=%s duration_sec=%.2f",
            path,
            result.status,
            result.selected_strategy,
            result.used_cache,
            result.duration_sec,
        )
        return result

    def install_frontend_deps(self, path: Path, cache_dir: Path) -> InstallResult:
        """Install frontend dependencies, preferring the frozen lockfile install."""

        started = time.monotonic()
        manifest = path / self.config.frontend_manifest_name
        if not manifest.is_file():
            self.logger.error("deps.frontend_manifest_missing path=%s", manifest)
            return InstallResult(
                component="frontend",
                status="FAILED",
                used_cache=False,
                duration_sec=time.monotonic() - started,
                outcomes=(
                    StepOutcome(strategy="manifest_check", status="FAILED", reason=f"{manifest.name} missing"),
                ),
            )

        strategies = [
            CommandStrategy(name="frontend_frozen", args=tuple(self.config.frontend_frozen_command)),
            CommandStrategy(
                name="frontend_standard",
                args=tuple(self.config.frontend_standard_command),
                degraded_reason="frozen install unavailable; dependency tree resolved afresh",
            ),
        ]
        with self.cache_guard.hold(cache_dir):
            used_cache = directory_is_populated(cache_dir)
            outcomes = run_strategy_chain(
                strategies,
                runner=self.runner,
                cwd=path,
                timeout_sec=self.config.install_timeout_sec,
                env={"npm_config_cache": str(cache_dir)},
                logger=self.logger,
            )

        result = InstallResult(
            component="frontend",
            status=chain_status(outcomes),
            used_cache=used_cache,
            duration_sec=time.monotonic() - started,
            outcomes=outcomes,
        )
        self.logger.info(
            "deps.frontend_done path=%s status=%s strategy=%s used_cache=%s duration_sec=%.2f",
            path,
            result.status,
            result.selected_strategy,
            result.used_cache,
            result.duration_sec,
        )
        return result

    def build_frontend(
        self,
        path: Path,
        memory_limit_bytes: int | None = None,
        *,
        output_dir: Path | None = None,
    ) -> BuildResult:
        """Run the frontend build under a Node heap budget, with one alternate command.

        When ``output_dir`` is given it is exported as ``BUILD_OUTPUT_DIR`` so the
        build script can emit straight into the release directory.
        """

        started = time.monotonic()
        limit = memory_limit_bytes or self.config.build_memory_limit_bytes
        strategies = [
            CommandStrategy(name="build_primary", args=tuple(self.config.build_command)),
            CommandStrategy(
                name="build_alternate",
                args=tuple(self.config.build_alternate_command),
                degraded_reason="primary build failed; alternate build command used",
            ),
        ]
        env = {"NODE_OPTIONS": node_memory_option(limit)}
        if output_dir is not None:
            env["BUILD_OUTPUT_DIR"] = str(output_dir)
        outcomes = run_strategy_chain(
            strategies,
            runner=self.runner,
            cwd=path,
            timeout_sec=self.config.build_timeout_sec,
            env=env,
            logger=self.logger,
        )
        result = BuildResult(
            status=chain_status(outcomes),
            duration_sec=time.monotonic() - started,
            memory_limit_bytes=limit,
            outcomes=outcomes,
        )
        self.logger.info(
            "deps.build_done path=%s status=%s strategy=%s duration_sec=%.2f",
            path,
            result.status,
            result.selected_strategy,
            result.duration_sec,
        )
        return result
