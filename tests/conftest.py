"""Shared fixtures: temp settings, fake command runner, fake service manager."""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, Sequence

import pytest
import yaml

from tap_deploy.config import AppSettings, load_settings
from tap_deploy.logging_utils import DEFAULT_LOG_FORMAT
from tap_deploy.markets.paths import resolve_paths
from tap_deploy.models import DeploymentPaths
from tap_deploy.system.commands import CommandResult
from tap_deploy.system.services import ServiceOutcome

BUILD_COMMAND = ("npm", "run", "build")
BUILD_ALTERNATE_COMMAND = ("npm", "run", "build:prod")
BACKEND_COMMAND = ("composer", "install", "--no-dev", "--no-interaction", "--optimize-autoloader")
BACKEND_ALTERNATE_COMMAND = ("composer", "install", "--no-dev", "--no-interaction", "--no-scripts")
FRONTEND_FROZEN_COMMAND = ("npm", "ci")
FRONTEND_STANDARD_COMMAND = ("npm", "install")


@dataclass
class RecordedCall:
    args: tuple[str, ...]
    cwd: Path | None
    timeout_sec: float | None
    env: dict[str, str] = field(default_factory=dict)


Handler = Callable[[RecordedCall], "CommandResult | int | str"]


class FakeRunner:
    """Records commands; answers from prefix-matched handlers, else exit 0."""

    def __init__(self, handlers: Mapping[tuple[str, ...], Handler | int | str] | None = None) -> None:
        self.handlers: dict[tuple[str, ...], Handler | int | str] = dict(handlers or {})
        self.calls: list[RecordedCall] = []
        self._lock = threading.Lock()

    def on(self, prefix: Sequence[str], handler: Handler | int | str) -> "FakeRunner":
        self.handlers[tuple(prefix)] = handler
        return self

    def _match(self, argv: tuple[str, ...]) -> Handler | int | str | None:
        best: tuple[str, ...] | None = None
        for prefix in self.handlers:
            if argv[: len(prefix)] == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        return None if best is None else self.handlers[best]

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout_sec: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        argv = tuple(str(arg) for arg in args)
        call = RecordedCall(args=argv, cwd=cwd, timeout_sec=timeout_sec, env=dict(env or {}))
        with self._lock:
            self.calls.append(call)
        handler = self._match(argv)
        if handler is None:
            return CommandResult(args=argv, returncode=0)
        outcome = handler(call) if callable(handler) else handler
        if isinstance(outcome, CommandResult):
            return outcome
        if isinstance(outcome, str):
            return CommandResult(args=argv, returncode=0, stdout=outcome)
        return CommandResult(args=argv, returncode=int(outcome), stderr=f"exit {outcome}")

    def commands(self) -> list[tuple[str, ...]]:
        return [call.args for call in self.calls]

    def calls_for(self, prefix: Sequence[str]) -> list[RecordedCall]:
        wanted = tuple(prefix)
        return [call for call in self.calls if call.args[: len(wanted)] == wanted]


class FakeServiceManager:
    def __init__(self, states: Mapping[str, str] | None = None) -> None:
        self.states = dict(states or {})
        self.ensured: list[str] = []

    def ensure_running(self, name: str) -> ServiceOutcome:
        self.ensured.append(name)
        return ServiceOutcome(name=name, ok=True)

    def active_state(self, name: str) -> str:
        return self.states.get(name, "active")


def emit_build_output(files: Mapping[str, str]) -> Handler:
    """Build handler writing ``files`` into ``BUILD_OUTPUT_DIR``."""

    def _handler(call: RecordedCall) -> int:
        output_dir = Path(call.env["BUILD_OUTPUT_DIR"])
        for relative, content in files.items():
            target = output_dir / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return 0

    return _handler


def _deep_merge(base: dict[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@pytest.fixture(autouse=True)
def _drop_cli_log_handlers() -> Iterator[None]:
    """Remove handlers installed by ``configure_logging`` during a test."""

    yield
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if handler.formatter is not None and handler.formatter._fmt == DEFAULT_LOG_FORMAT:
            root_logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., AppSettings]:
    """Write a settings YAML under ``tmp_path/configs`` and load it."""

    def _make(overrides: Mapping[str, Any] | None = None) -> AppSettings:
        base: dict[str, Any] = {
            "paths": {
                "backend_base": str(tmp_path / "backend"),
                "frontend_base": str(tmp_path / "www"),
                "backend_cache_root": str(tmp_path / "cache" / "composer"),
                "frontend_cache_root": str(tmp_path / "cache" / "npm"),
                "artifacts_root": str(tmp_path / "artifacts"),
                "logs_root": str(tmp_path / "logs"),
            },
            "release": {"version": "20240724", "keep_releases": 0},
            "markets": {"codes": ["pl", "uk", "de", "fr", "gr"]},
            "dependencies": {"lock_file_policy": "fatal", "cache_mode": "per_market"},
            "system": {
                "services": ["apache2", "php8.1-fpm"],
                "min_free_disk_bytes": 0,
                "manage_packages": False,
                "manage_services": False,
            },
        }
        payload = _deep_merge(base, overrides or {})
        settings_file = tmp_path / "configs" / "settings.yaml"
        settings_file.parent.mkdir(parents=True, exist_ok=True)
        settings_file.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
        return load_settings(config_file=settings_file)

    return _make


@pytest.fixture
def settings(make_settings: Callable[..., AppSettings]) -> AppSettings:
    return make_settings()


def market_paths(settings: AppSettings, market: str, version: str = "20240724") -> DeploymentPaths:
    return resolve_paths(
        market,
        version,
        paths_config=settings.paths,
        release_config=settings.release,
        cache_mode=settings.dependencies.cache_mode,
    )


def create_market_tree(settings: AppSettings, market: str, *, lock_file: bool = True) -> DeploymentPaths:
    """Create backend/frontend checkouts for ``market`` with their manifests."""

    paths = market_paths(settings, market, settings.release.effective_version())
    paths.backend_dir.mkdir(parents=True, exist_ok=True)
    paths.frontend_dir.mkdir(parents=True, exist_ok=True)
    if lock_file:
        (paths.backend_dir / "composer.lock").write_text("{}", encoding="utf-8")
    (paths.backend_dir / "composer.json").write_text("{}", encoding="utf-8")
    (paths.frontend_dir / "package.json").write_text('{"name": "tap-client"}', encoding="utf-8")
    return paths


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner({BUILD_COMMAND: emit_build_output({"index.html": "<html>app</html>", "js/app.js": "app()"})})


@pytest.fixture
def fake_services() -> FakeServiceManager:
    return FakeServiceManager()
