"""Deployment run orchestration."""

from tap_deploy.runner.pipeline import (
    DeployRunOptions,
    DeployRunResult,
    MarketRunner,
    classify_health,
    prepare_host,
    run_deploy_pipeline,
    select_markets,
    validate_version_label,
)
from tap_deploy.runner.state import ALLOWED_TRANSITIONS, MarketStateMachine, RunCancellation

__all__ = [
    "DeployRunOptions",
    "DeployRunResult",
    "MarketRunner",
    "classify_health",
    "prepare_host",
    "run_deploy_pipeline",
    "select_markets",
    "validate_version_label",
    "ALLOWED_TRANSITIONS",
    "MarketStateMachine",
    "RunCancellation",
]
