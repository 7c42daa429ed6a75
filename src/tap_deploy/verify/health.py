"""Post-publish health verification.

Every check runs on its own: a failing or raising check is recorded and the
remaining checks still execute. The report is data; ``verify`` never raises
for a failed check.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Sequence

from tap_deploy.models import DeploymentPaths, PublishResult, VerificationReport
from tap_deploy.release.placeholders import real_output_files
from tap_deploy.release.publisher import pointer_targets
from tap_deploy.system.services import ServiceManagerLike

LOGGER = logging.getLogger(__name__)

CHECK_NAMES: tuple[str, ...] = (
    "backend_dir_exists",
    "frontend_dir_exists",
    "dependency_manifest_exists",
    "version_dir_exists",
    "pointer_targets_version",
    "build_output_real",
)


class HealthVerifier:
    """Checks directories, release pointer, build quality, and services."""

    def __init__(
        self,
        *,
        service_manager: ServiceManagerLike | None = None,
        dependency_manifest_name: str = "composer.lock",
        logger: logging.Logger | None = None,
    ) -> None:
        self.service_manager = service_manager
        self.dependency_manifest_name = dependency_manifest_name
        self.logger = logger or LOGGER

    def verify(
        self,
        market: str,
        paths: DeploymentPaths,
        expected_version: str,
        expected_services: Sequence[str] = (),
        *,
        publish_result: PublishResult | None = None,
    ) -> VerificationReport:
        version_dir = paths.dist_dir / expected_version
        results: dict[str, bool] = {}
        errors: dict[str, str] = {}

        def _run(name: str, check: Callable[[], bool]) -> None:
            try:
                results[name] = bool(check())
            except Exception as exc:  # a broken check is a failed check
                results[name] = False
                errors[name] = f"{type(exc).__name__}: {exc}"
                self.logger.warning("verify.check_error market=%s check=%s error=%s", market, name, exc)

        _run("backend_dir_exists", paths.backend_dir.is_dir)
        _run("frontend_dir_exists", paths.frontend_dir.is_dir)
        _run("dependency_manifest_exists", (paths.backend_dir / self.dependency_manifest_name).is_file)
        _run("version_dir_exists", version_dir.is_dir)
        _run("pointer_targets_version", lambda: pointer_targets(paths, version_dir))
        _run("build_output_real", lambda: self._build_output_real(paths, expected_version, publish_result))

        service_states: dict[str, str] = {}
        for service in expected_services:
            service_states[service] = self._service_state(market, service, errors)

        failed = [name for name in CHECK_NAMES if not results[name]]
        failed.extend(f"service:{name}" for name, state in service_states.items() if state != "active")

        report = VerificationReport(
            market=market,
            backend_dir_exists=results["backend_dir_exists"],
            frontend_dir_exists=results["frontend_dir_exists"],
            dependency_manifest_exists=results["dependency_manifest_exists"],
            version_dir_exists=results["version_dir_exists"],
            pointer_targets_version=results["pointer_targets_version"],
            build_output_real=results["build_output_real"],
            service_states=service_states,
            failed_checks=tuple(failed),
            check_errors=errors,
        )
        if report.healthy:
            self.logger.info("verify.healthy market=%s version=%s", market, expected_version)
        else:
            self.logger.warning("verify.failed_checks market=%s checks=%s", market, list(report.failed_checks))
        return report

    @staticmethod
    def _build_output_real(
        paths: DeploymentPaths,
        version: str,
        publish_result: PublishResult | None,
    ) -> bool:
        if publish_result is not None and publish_result.emergency_fallback_used:
            return False
        return bool(real_output_files(paths.dist_dir / version, market=paths.market, version=version))

    def _service_state(self, market: str, service: str, errors: dict[str, str]) -> str:
        if self.service_manager is None:
            return "unknown"
        try:
            return self.service_manager.active_state(service)
        except Exception as exc:  # recorded, other services still checked
            errors[f"service:{service}"] = f"{type(exc).__name__}: {exc}"
            self.logger.warning("verify.service_error market=%s service=%s error=%s", market, service, exc)
            return "unknown"


def checkout_paths(paths: DeploymentPaths) -> dict[str, Path]:
    """Backend and frontend checkouts inspected by ``verify-git``."""

    return {"backend": paths.backend_dir, "frontend": paths.frontend_dir}
