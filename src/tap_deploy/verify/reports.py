"""Run-level aggregation of per-market results."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

import polars as pl

from tap_deploy.models import MarketResult

MARKET_RESULTS_SCHEMA: dict[str, pl.DataType] = {
    "market": pl.String,
    "status": pl.String,
    "health": pl.String,
    "failed_stage": pl.String,
    "reason": pl.String,
    "emergency_fallback_used": pl.Boolean,
    "symlink_swapped": pl.Boolean,
    "version_published": pl.String,
    "backend_install_status": pl.String,
    "frontend_install_status": pl.String,
    "build_status": pl.String,
    "failed_checks": pl.String,
    "warning_count": pl.Int64,
    "duration_sec": pl.Float64,
}


def empty_market_results_df() -> pl.DataFrame:
    """Create empty market-results frame with stable schema."""

    return pl.DataFrame(schema=MARKET_RESULTS_SCHEMA)


def _install_status(result: MarketResult, component: str) -> str | None:
    for install in result.installs:
        if install.component == component:
            return install.status
    return None


def market_results_df(results: Sequence[MarketResult]) -> pl.DataFrame:
    """One row per market, in run order."""

    if not results:
        return empty_market_results_df()
    rows: list[dict[str, object]] = []
    for result in results:
        rows.append(
            {
                "market": result.market,
                "status": result.status,
                "health": result.health,
                "failed_stage": result.failed_stage,
                "reason": result.reason,
                "emergency_fallback_used": result.emergency_fallback_used,
                "symlink_swapped": bool(result.publish and result.publish.symlink_swapped),
                "version_published": result.publish.version_published if result.publish else None,
                "backend_install_status": _install_status(result, "backend"),
                "frontend_install_status": _install_status(result, "frontend"),
                "build_status": result.build.status if result.build else None,
                "failed_checks": ",".join(result.verification.failed_checks) if result.verification else None,
                "warning_count": len(result.warnings),
                "duration_sec": round(result.duration_sec, 3),
            }
        )
    return pl.DataFrame(rows, schema_overrides=MARKET_RESULTS_SCHEMA)


def build_run_summary(results: Sequence[MarketResult]) -> dict[str, Any]:
    """Aggregate counts and the operator-facing market lists. Never raises."""

    health_counts = {"healthy": 0, "degraded": 0, "failed": 0}
    status_counts = {"DONE": 0, "FAILED": 0, "SKIPPED": 0}
    degraded: list[dict[str, Any]] = []
    failed: list[dict[str, Any]] = []
    skipped: list[str] = []
    for result in results:
        status_counts[result.status] = status_counts.get(result.status, 0) + 1
        if result.status == "SKIPPED":
            skipped.append(result.market)
            continue
        health_counts[result.health] = health_counts.get(result.health, 0) + 1
        if result.health == "degraded":
            degraded.append(
                {
                    "market": result.market,
                    "emergency_fallback_used": result.emergency_fallback_used,
                    "warnings": list(result.warnings),
                }
            )
        elif result.health == "failed":
            failed.append(
                {
                    "market": result.market,
                    "failed_stage": result.failed_stage,
                    "reason": result.reason,
                }
            )
    return {
        "markets_total": len(results),
        "status_counts": status_counts,
        "health_counts": health_counts,
        "emergency_fallback_markets": [result.market for result in results if result.emergency_fallback_used],
        "degraded_markets": degraded,
        "failed_markets": failed,
        "skipped_markets": skipped,
    }


def format_market_line(result: MarketResult) -> str:
    """Single summary line for CLI output."""

    parts = [
        f"market={result.market}",
        f"status={result.status}",
        f"health={result.health}",
        f"fallback={'yes' if result.emergency_fallback_used else 'no'}",
    ]
    if result.reason:
        parts.append(f"reason={result.reason}")
    return " ".join(parts)


def summarize_deploy_run(summary_path: Path) -> dict[str, Any]:
    """Read a written run summary and return the concise operator view."""

    if not summary_path.exists():
        raise FileNotFoundError(f"Run summary not found: {summary_path}")
    summary = json.loads(summary_path.read_text(encoding="utf-8"))

    results_path_text = summary.get("outputs", {}).get("market_results_path")
    market_rows: list[dict[str, Any]] = []
    if results_path_text and Path(results_path_text).exists():
        market_rows = (
            pl.read_parquet(results_path_text)
            .select(["market", "status", "health", "emergency_fallback_used", "reason"])
            .to_dicts()
        )

    return {
        "run_id": summary.get("run_id"),
        "version": summary.get("version"),
        "started_ts": summary.get("started_ts"),
        "duration_sec": summary.get("duration_sec"),
        "status_counts": summary.get("status_counts", {}),
        "health_counts": summary.get("health_counts", {}),
        "emergency_fallback_markets": summary.get("emergency_fallback_markets", []),
        "failed_markets": summary.get("failed_markets", []),
        "markets": market_rows,
    }
