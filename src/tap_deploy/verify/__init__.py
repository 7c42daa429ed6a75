"""Health verification and run reporting."""

from tap_deploy.verify.health import CHECK_NAMES, HealthVerifier, checkout_paths
from tap_deploy.verify.reports import (
    build_run_summary,
    format_market_line,
    market_results_df,
    summarize_deploy_run,
)

__all__ = [
    "CHECK_NAMES",
    "HealthVerifier",
    "checkout_paths",
    "build_run_summary",
    "format_market_line",
    "market_results_df",
    "summarize_deploy_run",
]
