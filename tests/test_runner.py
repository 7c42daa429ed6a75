"""Tests for market orchestration, isolation, cancellation, and run artifacts."""

from __future__ import annotations

import json
from pathlib import Path

import polars as pl
import pytest
from conftest import (
    BUILD_COMMAND,
    FakeRunner,
    FakeServiceManager,
    RecordedCall,
    create_market_tree,
    market_paths,
)

from tap_deploy.errors import ConfigurationError, PublishIOError
from tap_deploy.release.publisher import ReleasePublisher, read_pointer
from tap_deploy.runner.pipeline import (
    DeployRunOptions,
    MarketRunner,
    run_deploy_pipeline,
    select_markets,
    validate_version_label,
)
from tap_deploy.runner.state import MarketStateMachine, RunCancellation
from tap_deploy.verify.reports import summarize_deploy_run

VERSION = "20240724"
HAPPY_PATH = ("PENDING", "INSTALLING", "PUBLISHING", "VERIFYING", "DONE")


def _build_for_all_but(*empty_markets: str):
    def _handler(call: RecordedCall) -> int:
        if call.cwd is not None and call.cwd.name in empty_markets:
            return 0
        output_dir = Path(call.env["BUILD_OUTPUT_DIR"])
        output_dir.mkdir(parents=True, exist_ok=True)
        (output_dir / "index.html").write_text("<html>built</html>", encoding="utf-8")
        return 0

    return _handler


def _prepare_all(settings, **kwargs):
    return {market: create_market_tree(settings, market, **kwargs) for market in settings.markets.codes}


def _runner(settings, fake_runner, services=None, **kwargs):
    return MarketRunner(
        settings,
        version=VERSION,
        runner=fake_runner,
        service_manager=services or FakeServiceManager(),
        sync_sources=False,
        **kwargs,
    )


def test_pl_end_to_end_with_real_build(settings, fake_runner):
    paths = create_market_tree(settings, "pl")
    result = _runner(settings, fake_runner).run(["pl"])[0]

    assert result.status == "DONE"
    assert result.health == "healthy"
    assert result.stage_history == HAPPY_PATH
    assert result.publish is not None
    assert result.publish.emergency_fallback_used is False
    assert read_pointer(paths) == (settings.paths.frontend_base / "pl" / "dist" / VERSION).resolve()
    report = result.verification
    assert report is not None
    assert report.backend_dir_exists and report.frontend_dir_exists
    assert report.dependency_manifest_exists and report.version_dir_exists
    assert report.build_output_real
    assert all(state == "active" for state in report.service_states.values())


def test_gr_end_to_end_with_empty_build(settings):
    paths = create_market_tree(settings, "gr")
    fake_runner = FakeRunner({BUILD_COMMAND: _build_for_all_but("gr")})
    result = _runner(settings, fake_runner).run(["gr"])[0]

    assert result.status == "DONE"
    assert result.health == "degraded"
    assert result.emergency_fallback_used is True
    assert any(read_pointer(paths).iterdir())
    report = result.verification
    assert report is not None
    assert report.directories_ok
    assert report.build_output_real is False
    assert "emergency placeholder content published" in result.warnings


def test_failure_in_third_market_is_isolated(settings, fake_runner):
    _prepare_all(settings)
    (settings.paths.backend_base / "de" / "composer.lock").unlink()

    results = _runner(settings, fake_runner).run(settings.markets.codes)

    assert [result.market for result in results] == ["pl", "uk", "de", "fr", "gr"]
    statuses = {result.market: result.status for result in results}
    assert statuses == {"pl": "DONE", "uk": "DONE", "de": "FAILED", "fr": "DONE", "gr": "DONE"}
    failed = results[2]
    assert failed.failed_stage == "INSTALLING"
    assert failed.reason is not None and failed.reason.startswith("MissingLockFile")
    assert failed.verification is None
    assert failed.stage_history == ("PENDING", "INSTALLING", "FAILED")


def test_publish_io_error_fails_only_that_market(settings, fake_runner):
    _prepare_all(settings)

    class FlakyPublisher(ReleasePublisher):
        def publish(self, paths, version):
            if paths.market == "de":
                raise PublishIOError("No space left on device", market=paths.market)
            return super().publish(paths, version)

    results = _runner(settings, fake_runner, publisher=FlakyPublisher()).run(settings.markets.codes)
    failed = [result for result in results if result.status == "FAILED"]
    assert [result.market for result in failed] == ["de"]
    assert failed[0].failed_stage == "PUBLISHING"
    assert "No space left" in (failed[0].reason or "")
    assert all(result.status == "DONE" for result in results if result.market != "de")


def test_unexpected_exception_is_contained(settings, fake_runner):
    _prepare_all(settings)

    class BrokenPublisher(ReleasePublisher):
        def publish(self, paths, version):
            if paths.market == "uk":
                raise RuntimeError("boom")
            return super().publish(paths, version)

    results = _runner(settings, fake_runner, publisher=BrokenPublisher()).run(settings.markets.codes)
    uk = results[1]
    assert uk.status == "FAILED"
    assert uk.reason == "RuntimeError: boom"
    assert results[2].status == "DONE"


def test_run_scoped_error_aborts_the_run(settings, fake_runner):
    _prepare_all(settings)

    class MisconfiguredPublisher(ReleasePublisher):
        def publish(self, paths, version):
            if paths.market == "uk":
                raise ConfigurationError("pointer name collides with release label", market=paths.market)
            return super().publish(paths, version)

    market_runner = _runner(settings, fake_runner, publisher=MisconfiguredPublisher())
    with pytest.raises(ConfigurationError):
        market_runner.run(settings.markets.codes)
    assert read_pointer(market_paths(settings, "pl")) is not None
    assert not market_paths(settings, "de").version_dir.exists()


def test_install_and_build_failures_still_publish(settings):
    create_market_tree(settings, "pl")
    fake_runner = FakeRunner({("composer",): 1, ("npm",): 1})
    result = _runner(settings, fake_runner).run(["pl"])[0]

    assert result.status == "DONE"
    assert result.health == "degraded"
    assert result.emergency_fallback_used
    assert [install.status for install in result.installs] == ["FAILED", "FAILED"]
    assert result.build is not None and result.build.status == "FAILED"
    assert any(warning.startswith("DependencyInstallFailed") for warning in result.warnings)
    assert any(warning.startswith("BuildFailed") for warning in result.warnings)


def test_preflight_disk_check_fails_market(make_settings, fake_runner):
    settings = make_settings({"system": {"min_free_disk_bytes": 2**62}})
    create_market_tree(settings, "pl")
    result = _runner(settings, fake_runner).run(["pl"])[0]
    assert result.status == "FAILED"
    assert result.reason is not None and result.reason.startswith("PreflightFailed")
    assert fake_runner.calls == []


def test_cancellation_stops_new_markets_but_finishes_in_flight(settings):
    _prepare_all(settings)
    cancellation = RunCancellation()
    build = _build_for_all_but()

    def _build_and_cancel(call: RecordedCall) -> int:
        if call.cwd is not None and call.cwd.name == "uk":
            cancellation.cancel("operator abort")
        return build(call)

    fake_runner = FakeRunner({BUILD_COMMAND: _build_and_cancel})
    results = _runner(settings, fake_runner, cancellation=cancellation).run(settings.markets.codes)

    assert [result.status for result in results] == ["DONE", "DONE", "SKIPPED", "SKIPPED", "SKIPPED"]
    assert results[1].publish is not None and results[1].publish.symlink_swapped
    assert results[2].reason == "operator abort"


def test_parallel_markets_keep_configured_order(make_settings, fake_runner):
    settings = make_settings({"markets": {"max_workers": 3}, "dependencies": {"cache_mode": "shared_locked"}})
    _prepare_all(settings)
    results = _runner(settings, fake_runner).run(settings.markets.codes)
    assert [result.market for result in results] == settings.markets.codes
    assert all(result.status == "DONE" for result in results)


def test_git_sync_failure_over_existing_checkout_is_warning(make_settings):
    settings = make_settings(
        {"repositories": {"backend": {"remote": "https://git.example/tap.git", "enabled": True}}}
    )
    create_market_tree(settings, "pl")
    (settings.paths.backend_base / "pl" / ".git").mkdir()
    fake_runner = FakeRunner({BUILD_COMMAND: _build_for_all_but(), ("git", "fetch"): 128})
    result = MarketRunner(settings, version=VERSION, runner=fake_runner, service_manager=FakeServiceManager()).run(
        ["pl"]
    )[0]
    assert result.status == "DONE"
    assert any("backend source sync failed" in warning for warning in result.warnings)


def test_git_clone_failure_without_checkout_fails_market(make_settings, fake_runner):
    settings = make_settings(
        {"repositories": {"frontend": {"remote": "https://git.example/client.git", "enabled": True}}}
    )
    fake_runner.on(("git", "clone"), 128)
    result = MarketRunner(settings, version=VERSION, runner=fake_runner, service_manager=FakeServiceManager()).run(
        ["uk"]
    )[0]
    assert result.status == "FAILED"
    assert result.reason is not None and result.reason.startswith("SourceSyncFailed")


def test_state_machine_rejects_illegal_transitions():
    machine = MarketStateMachine("pl")
    with pytest.raises(ValueError):
        machine.advance("PUBLISHING")
    machine.advance("INSTALLING")
    machine.advance("PUBLISHING")
    machine.advance("VERIFYING")
    with pytest.raises(ValueError):
        machine.fail()
    machine.advance("DONE")
    assert machine.terminal


def test_select_markets_preserves_configured_order():
    assert select_markets(["pl", "uk", "de"], ["DE", "pl"]) == ["pl", "de"]
    assert select_markets(["pl", "uk"], []) == ["pl", "uk"]
    with pytest.raises(ConfigurationError):
        select_markets(["pl"], ["xx"])


@pytest.mark.parametrize("label", ["", "..", ".hidden", "a/b", "production"])
def test_invalid_version_labels(label):
    with pytest.raises(ConfigurationError):
        validate_version_label(label, "production")


def test_pipeline_writes_summary_and_market_results(settings):
    _prepare_all(settings)
    (settings.paths.backend_base / "de" / "composer.lock").unlink()
    fake_runner = FakeRunner({BUILD_COMMAND: _build_for_all_but("gr")})

    result = run_deploy_pipeline(
        settings,
        options=DeployRunOptions(skip_git=True),
        runner=fake_runner,
        service_manager=FakeServiceManager(),
    )

    assert result.any_failed
    summary = json.loads(result.summary_path.read_text(encoding="utf-8"))
    assert summary["version"] == VERSION
    assert summary["health_counts"] == {"healthy": 3, "degraded": 1, "failed": 1}
    assert summary["emergency_fallback_markets"] == ["gr"]
    assert summary["failed_markets"][0]["market"] == "de"
    assert [market["market"] for market in summary["markets"]] == ["pl", "uk", "de", "fr", "gr"]

    frame = pl.read_parquet(result.market_results_path)
    assert frame.height == 5
    assert frame.filter(pl.col("market") == "gr")["emergency_fallback_used"].item() is True

    operator_view = summarize_deploy_run(result.summary_path)
    assert operator_view["run_id"] == result.run_id
    assert len(operator_view["markets"]) == 5


def test_pipeline_dry_run_runs_no_commands(settings, fake_runner):
    result = run_deploy_pipeline(
        settings,
        options=DeployRunOptions(dry_run=True, markets=("pl", "gr")),
        runner=fake_runner,
        service_manager=FakeServiceManager(),
    )
    assert fake_runner.calls == []
    assert result.results == ()
    assert set(result.summary["paths"]) == {"pl", "gr"}
    assert result.summary_path.exists()


def test_pipeline_prepares_host_when_enabled(make_settings):
    settings = make_settings(
        {"system": {"manage_packages": True, "manage_services": True, "packages": ["git", "npm"]}}
    )
    create_market_tree(settings, "pl")
    fake_runner = FakeRunner({BUILD_COMMAND: _build_for_all_but(), ("dpkg", "-s", "npm"): 1})
    services = FakeServiceManager()

    result = run_deploy_pipeline(
        settings,
        options=DeployRunOptions(markets=("pl",), skip_git=True),
        runner=fake_runner,
        service_manager=services,
    )

    assert result.summary["host_setup"]["packages"]["status"] == "success"
    assert fake_runner.calls_for(("apt-get", "install"))[0].args[-1] == "npm"
    assert services.ensured == ["apache2", "php8.1-fpm"]


def test_pipeline_version_override(settings, fake_runner):
    create_market_tree(settings, "pl")
    result = run_deploy_pipeline(
        settings,
        options=DeployRunOptions(markets=("pl",), version="hotfix-1", skip_git=True, skip_system=True),
        runner=fake_runner,
        service_manager=FakeServiceManager(),
    )
    assert result.version == "hotfix-1"
    assert result.results[0].publish is not None
    assert result.results[0].publish.version_dir.name == "hotfix-1"
