"""Typer CLI entrypoint for tap_deploy."""

from __future__ import annotations

import json
import logging
import signal
from pathlib import Path
from typing import Any

import typer
import yaml

from tap_deploy.config import AppSettings, load_settings
from tap_deploy.errors import ConfigurationError
from tap_deploy.logging_utils import configure_logging, level_from_name
from tap_deploy.markets.paths import resolve_all_paths
from tap_deploy.runner.pipeline import (
    DeployRunOptions,
    run_deploy_pipeline,
    select_markets,
    validate_version_label,
)
from tap_deploy.runner.state import RunCancellation
from tap_deploy.system.commands import CommandRunner
from tap_deploy.system.git_sync import inspect_checkout
from tap_deploy.system.services import ServiceManager
from tap_deploy.utils.paths import ensure_directories
from tap_deploy.verify.health import HealthVerifier, checkout_paths
from tap_deploy.verify.reports import format_market_line, summarize_deploy_run

app = typer.Typer(
    add_completion=False,
    help="tap_deploy command line interface.",
    no_args_is_help=True,
)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    help="Optional settings YAML path.",
    exists=False,
    file_okay=True,
    dir_okay=False,
    readable=True,
)
MARKET_OPTION = typer.Option(
    None,
    "--market",
    "-m",
    help="Limit to these market codes (repeatable). Defaults to all configured markets.",
)
VERSION_OPTION = typer.Option(
    None,
    "--version",
    help="Release version label. Defaults to release.version or today's UTC date.",
)


def _load_and_optionally_configure_logger(
    config_file: Path | None,
    configure: bool,
    *,
    log_level: str = "info",
    require_markets: bool = True,
) -> tuple[AppSettings, logging.Logger]:
    try:
        settings = load_settings(config_file=config_file, require_markets=require_markets)
    except ConfigurationError as exc:
        typer.echo(f"configuration error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    if configure:
        try:
            level = level_from_name(log_level)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        logger = configure_logging(settings.paths.logs_root / "deploy.log", level=level)
    else:
        logger = logging.getLogger("tap_deploy")
    return settings, logger


def _resolve_selection(
    settings: AppSettings,
    markets: list[str] | None,
    version: str | None,
) -> tuple[list[str], str]:
    try:
        selected = select_markets(settings.markets.codes, markets or [])
        label = validate_version_label(
            version or settings.release.effective_version(),
            settings.release.pointer_name,
        )
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    return selected, label


def _install_interrupt_handler(cancellation: RunCancellation, logger: logging.Logger) -> Any:
    """First Ctrl-C stops new markets; in-flight work finishes."""

    def _handler(signum: int, frame: Any) -> None:
        if cancellation.is_cancelled():
            raise KeyboardInterrupt
        logger.warning("deploy_run.cancel_requested signal=%s", signum)
        cancellation.cancel("cancelled by operator")

    return signal.signal(signal.SIGINT, _handler)


@app.command("show-config")
def show_config(config_file: Path | None = CONFIG_FILE_OPTION) -> None:
    """Print the effective configuration after env overrides."""

    settings, _ = _load_and_optionally_configure_logger(config_file, configure=False, require_markets=False)
    rendered = yaml.safe_dump(settings.as_dict(), sort_keys=False)
    typer.echo(rendered)


@app.command("resolve-paths")
def resolve_paths_cmd(
    markets: list[str] | None = MARKET_OPTION,
    version: str | None = VERSION_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Print the per-market checkout, release, and cache paths."""

    settings, _ = _load_and_optionally_configure_logger(config_file, configure=False)
    selected, label = _resolve_selection(settings, markets, version)
    resolved = resolve_all_paths(
        selected,
        label,
        paths_config=settings.paths,
        release_config=settings.release,
        cache_mode=settings.dependencies.cache_mode,
    )
    rendered = yaml.safe_dump({market: paths.as_dict() for market, paths in resolved.items()}, sort_keys=False)
    typer.echo(rendered)


@app.command("deploy")
def deploy(
    markets: list[str] | None = MARKET_OPTION,
    version: str | None = VERSION_OPTION,
    skip_git: bool = typer.Option(False, "--skip-git", help="Do not clone/pull source checkouts."),
    skip_system: bool = typer.Option(
        False,
        "--skip-system",
        help="Do not ensure OS packages/services before deploying.",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Resolve and log the plan without changing anything."),
    log_level: str = typer.Option("info", "--log-level", help="Logging level."),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Install, build, publish, and verify each market in configured order."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=True, log_level=log_level)
    selected, label = _resolve_selection(settings, markets, version)

    cancellation = RunCancellation()
    previous_handler = _install_interrupt_handler(cancellation, logger)
    try:
        result = run_deploy_pipeline(
            settings,
            options=DeployRunOptions(
                markets=tuple(selected),
                version=label,
                skip_git=skip_git,
                skip_system=skip_system,
                dry_run=dry_run,
            ),
            logger=logger,
            cancellation=cancellation,
        )
    except ConfigurationError as exc:
        typer.echo(f"configuration error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    summary = result.summary
    typer.echo(f"run_id: {result.run_id}")
    typer.echo(f"version: {result.version}")
    for market_result in result.results:
        typer.echo(format_market_line(market_result))
    typer.echo(f"healthy: {summary['health_counts']['healthy']}")
    typer.echo(f"degraded: {summary['health_counts']['degraded']}")
    typer.echo(f"failed: {summary['health_counts']['failed']}")
    typer.echo(f"skipped: {len(summary['skipped_markets'])}")
    if summary["emergency_fallback_markets"]:
        typer.echo(f"PLACEHOLDER CONTENT SERVED: {', '.join(summary['emergency_fallback_markets'])}")
    typer.echo(f"summary_path: {result.summary_path}")
    if result.any_failed:
        raise typer.Exit(code=1)


@app.command("verify")
def verify_cmd(
    markets: list[str] | None = MARKET_OPTION,
    version: str | None = VERSION_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Run health checks only, without installing or publishing."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=True)
    selected, label = _resolve_selection(settings, markets, version)
    runner = CommandRunner(logger=logger)
    verifier = HealthVerifier(
        service_manager=ServiceManager(runner, timeout_sec=settings.system.command_timeout_sec, logger=logger),
        dependency_manifest_name=settings.dependencies.lock_file_name,
        logger=logger,
    )
    resolved = resolve_all_paths(
        selected,
        label,
        paths_config=settings.paths,
        release_config=settings.release,
        cache_mode=settings.dependencies.cache_mode,
    )
    unhealthy = 0
    for market, paths in resolved.items():
        report = verifier.verify(market, paths, label, settings.system.services)
        status = "ok" if report.healthy else "failed"
        typer.echo(f"market={market} status={status} failed_checks={','.join(report.failed_checks) or '-'}")
        if not report.healthy:
            unhealthy += 1
    if unhealthy:
        raise typer.Exit(code=1)


@app.command("verify-git")
def verify_git_cmd(
    markets: list[str] | None = MARKET_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Report branch, last commit, and remote of each market's checkouts."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=False)
    selected, label = _resolve_selection(settings, markets, None)
    runner = CommandRunner(logger=logger)
    resolved = resolve_all_paths(
        selected,
        label,
        paths_config=settings.paths,
        release_config=settings.release,
        cache_mode=settings.dependencies.cache_mode,
    )
    report: dict[str, dict[str, object]] = {}
    for market, paths in resolved.items():
        report[market] = {
            component: inspect_checkout(checkout, runner=runner).as_dict()
            for component, checkout in checkout_paths(paths).items()
        }
    typer.echo(yaml.safe_dump(report, sort_keys=False))


@app.command("run-summary")
def run_summary_cmd(
    summary_file: Path = typer.Option(
        ...,
        "--summary-file",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
        help="Path to a *_deploy_run_summary.json file.",
    ),
) -> None:
    """Print the operator view of a completed run."""

    summary = summarize_deploy_run(summary_file)
    typer.echo(json.dumps(summary, indent=2, sort_keys=True, default=str))


@app.command("init-dirs")
def init_dirs(config_file: Path | None = CONFIG_FILE_OPTION) -> None:
    """Create cache, artifacts, and log folders."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=True, require_markets=False)
    created_dirs = ensure_directories(
        [
            settings.paths.backend_cache_root,
            settings.paths.frontend_cache_root,
            settings.paths.artifacts_root,
            settings.paths.logs_root,
        ]
    )
    logger.info("init_dirs.created_dirs count=%s", len(created_dirs))
    typer.echo("Initialized cache/artifacts/logs folders.")


def main() -> None:
    """Console-script entrypoint."""

    app()


if __name__ == "__main__":
    main()
