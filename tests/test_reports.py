from __future__ import annotations

from pathlib import Path

import pytest

from tap_deploy.models import InstallResult, MarketResult, PublishResult
from tap_deploy.utils.io import write_json_atomically, write_parquet_atomically
from tap_deploy.verify.reports import (
    MARKET_RESULTS_SCHEMA,
    build_run_summary,
    format_market_line,
    market_results_df,
    summarize_deploy_run,
)


def _publish(market: str, *, fallback: bool) -> PublishResult:
    return PublishResult(
        market=market,
        version_published="20240724",
        version_dir=Path(f"/www/{market}/dist/20240724"),
        pointer_path=Path(f"/www/{market}/dist/production"),
        symlink_swapped=True,
        emergency_fallback_used=fallback,
    )


@pytest.fixture
def results() -> list[MarketResult]:
    return [
        MarketResult(
            market="pl",
            status="DONE",
            health="healthy",
            stage_history=("PENDING", "INSTALLING", "PUBLISHING", "VERIFYING", "DONE"),
            installs=(InstallResult(component="backend", status="SUCCEEDED", used_cache=True, duration_sec=1.0),),
            publish=_publish("pl", fallback=False),
        ),
        MarketResult(
            market="gr",
            status="DONE",
            health="degraded",
            stage_history=("PENDING", "INSTALLING", "PUBLISHING", "VERIFYING", "DONE"),
            warnings=("emergency placeholder content published",),
            publish=_publish("gr", fallback=True),
        ),
        MarketResult(
            market="de",
            status="FAILED",
            health="failed",
            stage_history=("PENDING", "INSTALLING", "FAILED"),
            failed_stage="INSTALLING",
            reason="MissingLockFile: composer.lock not found",
        ),
        MarketResult(market="fr", status="SKIPPED", health="failed", stage_history=("PENDING",), reason="cancelled"),
    ]


def test_build_run_summary_counts(results):
    summary = build_run_summary(results)
    assert summary["markets_total"] == 4
    assert summary["status_counts"] == {"DONE": 2, "FAILED": 1, "SKIPPED": 1}
    assert summary["health_counts"] == {"healthy": 1, "degraded": 1, "failed": 1}
    assert summary["emergency_fallback_markets"] == ["gr"]
    assert summary["degraded_markets"][0]["market"] == "gr"
    assert summary["failed_markets"] == [
        {"market": "de", "failed_stage": "INSTALLING", "reason": "MissingLockFile: composer.lock not found"}
    ]
    assert summary["skipped_markets"] == ["fr"]


def test_build_run_summary_empty():
    summary = build_run_summary([])
    assert summary["markets_total"] == 0
    assert summary["health_counts"] == {"healthy": 0, "degraded": 0, "failed": 0}


def test_market_results_df_schema(results):
    frame = market_results_df(results)
    assert frame.columns == list(MARKET_RESULTS_SCHEMA)
    assert frame["market"].to_list() == ["pl", "gr", "de", "fr"]
    assert frame["emergency_fallback_used"].to_list() == [False, True, False, False]
    assert frame["backend_install_status"].to_list() == ["SUCCEEDED", None, None, None]
    assert market_results_df([]).schema == frame.schema


def test_format_market_line(results):
    assert format_market_line(results[1]) == "market=gr status=DONE health=degraded fallback=yes"
    assert format_market_line(results[2]).endswith("reason=MissingLockFile: composer.lock not found")


def test_summarize_deploy_run(tmp_path, results):
    results_path = tmp_path / "run_market_results.parquet"
    summary_path = tmp_path / "run_deploy_run_summary.json"
    write_parquet_atomically(market_results_df(results), results_path)
    write_json_atomically(
        {
            "run_id": "deploy-run-abc",
            "version": "20240724",
            **build_run_summary(results),
            "outputs": {"market_results_path": str(results_path)},
        },
        summary_path,
    )

    view = summarize_deploy_run(summary_path)
    assert view["run_id"] == "deploy-run-abc"
    assert view["emergency_fallback_markets"] == ["gr"]
    assert [row["market"] for row in view["markets"]] == ["pl", "gr", "de", "fr"]
    assert list(tmp_path.glob("*.tmp")) == []


def test_summarize_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        summarize_deploy_run(tmp_path / "missing.json")
