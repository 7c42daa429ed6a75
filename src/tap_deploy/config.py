"""Configuration models and loading logic."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import ClassVar, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from tap_deploy.errors import ConfigurationError
from tap_deploy.utils.time_utils import utc_compact_date

DEFAULT_SETTINGS_FILE = Path("configs/settings.yaml")
SETTINGS_FILE_ENV = "TAP_DEPLOY_SETTINGS_FILE"

MARKET_CODE_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")

LockFilePolicy = Literal["fatal", "warn"]
CacheMode = Literal["per_market", "shared_locked"]
PackageManagerName = Literal["apt", "dnf", "yum"]


class ProjectConfig(BaseModel):
    """Project metadata settings."""

    name: str = "tap_deploy"
    env: str = "prod"


class PathsConfig(BaseModel):
    """Filesystem roots for checkouts, caches, and run artifacts."""

    backend_base: Path = Path("/mnt/v2-markets")
    frontend_base: Path = Path("/mnt/www")
    backend_cache_root: Path = Path("./cache/composer")
    frontend_cache_root: Path = Path("./cache/npm")
    artifacts_root: Path = Path("./artifacts")
    logs_root: Path = Path("./logs")

    def resolved(self, project_root: Path) -> "PathsConfig":
        """Return a copy with project-relative paths resolved to absolute paths."""

        updates: dict[str, Path] = {}
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            updates[field_name] = value if value.is_absolute() else (project_root / value).resolve()
        return self.model_copy(update=updates)


class ReleaseConfig(BaseModel):
    """Release labelling and pointer layout."""

    version: str | None = None
    pointer_name: str = "production"
    dist_dir_name: str = "dist"
    keep_releases: int = Field(default=5, ge=0)

    def effective_version(self) -> str:
        """Return the configured version or today's UTC date label."""

        return self.version or utc_compact_date()


class MarketsConfig(BaseModel):
    """Ordered market list and scheduling."""

    codes: list[str] = Field(default_factory=list)
    max_workers: int = Field(default=1, ge=1)

    @field_validator("codes")
    @classmethod
    def _validate_codes(cls, value: list[str]) -> list[str]:
        normalized = [code.strip().lower() for code in value]
        for code in normalized:
            if not MARKET_CODE_PATTERN.match(code):
                raise ValueError(f"invalid market code: {code!r}")
        duplicates = sorted({code for code in normalized if normalized.count(code) > 1})
        if duplicates:
            raise ValueError(f"duplicate market codes: {', '.join(duplicates)}")
        return normalized


class DependenciesConfig(BaseModel):
    """Backend/frontend dependency and build commands."""

    backend_command: list[str] = Field(
        default_factory=lambda: ["composer", "install", "--no-dev", "--no-interaction", "--optimize-autoloader"]
    )
    backend_alternate_command: list[str] = Field(
        default_factory=lambda: ["composer", "install", "--no-dev", "--no-interaction", "--no-scripts"]
    )
    frontend_frozen_command: list[str] = Field(default_factory=lambda: ["npm", "ci", "--no-audit", "--no-fund"])
    frontend_standard_command: list[str] = Field(
        default_factory=lambda: ["npm", "install", "--no-audit", "--no-fund"]
    )
    build_command: list[str] = Field(default_factory=lambda: ["npm", "run", "build"])
    build_alternate_command: list[str] = Field(default_factory=lambda: ["npm", "run", "build:prod"])
    lock_file_name: str = "composer.lock"
    frontend_manifest_name: str = "package.json"
    lock_file_policy: LockFilePolicy = "fatal"
    cache_mode: CacheMode = "per_market"
    install_timeout_sec: float = Field(default=900.0, gt=0.0)
    build_timeout_sec: float = Field(default=1200.0, gt=0.0)
    build_memory_limit_bytes: int = Field(default=4 * 1024**3, ge=64 * 1024**2)


class RepositoryConfig(BaseModel):
    """One source checkout to keep in sync."""

    remote: str | None = None
    branch: str = "master"
    enabled: bool = False


class RepositoriesConfig(BaseModel):
    """Backend and frontend checkouts."""

    backend: RepositoryConfig = Field(default_factory=RepositoryConfig)
    frontend: RepositoryConfig = Field(default_factory=RepositoryConfig)


class SystemConfig(BaseModel):
    """OS-level packages and services."""

    packages: list[str] = Field(default_factory=lambda: ["git", "unzip", "composer", "nodejs", "npm"])
    services: list[str] = Field(default_factory=lambda: ["apache2", "php8.1-fpm"])
    package_manager: PackageManagerName = "apt"
    manage_packages: bool = False
    manage_services: bool = False
    min_free_disk_bytes: int = Field(default=2 * 1024**3, ge=0)
    command_timeout_sec: float = Field(default=300.0, gt=0.0)


class AppSettings(BaseSettings):
    """Top-level application settings."""

    _yaml_file_override: ClassVar[Path | None] = None

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    release: ReleaseConfig = Field(default_factory=ReleaseConfig)
    markets: MarketsConfig = Field(default_factory=MarketsConfig)
    dependencies: DependenciesConfig = Field(default_factory=DependenciesConfig)
    repositories: RepositoriesConfig = Field(default_factory=RepositoriesConfig)
    system: SystemConfig = Field(default_factory=SystemConfig)

    model_config = SettingsConfigDict(
        env_prefix="TAP_DEPLOY_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Use YAML defaults while allowing env vars to override values."""

        yaml_file = resolve_settings_file(cls._yaml_file_override)
        yaml_settings = YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            yaml_settings,
            file_secret_settings,
        )

    def as_dict(self) -> dict[str, object]:
        """Return settings as a standard nested dictionary."""

        return self.model_dump(mode="json")


def find_project_root(start: Path | None = None) -> Path:
    """Locate the project root by traversing upward for config markers."""

    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / "configs/settings.yaml").exists():
            return candidate
    return current


def resolve_settings_file(override: Path | None = None) -> Path:
    """Resolve settings file from explicit override, env var, or default."""

    chosen = override
    if chosen is None:
        env_value = os.getenv(SETTINGS_FILE_ENV)
        if env_value:
            chosen = Path(env_value)
    if chosen is None:
        chosen = DEFAULT_SETTINGS_FILE

    if not chosen.is_absolute():
        chosen = (find_project_root() / chosen).resolve()
    return chosen


def load_settings(config_file: Path | None = None, *, require_markets: bool = True) -> AppSettings:
    """Load settings with YAML defaults and environment variable overrides.

    Raises ``ConfigurationError`` when the file given explicitly is missing,
    when validation fails, or when no markets are configured.
    """

    settings_file = resolve_settings_file(config_file)
    if config_file is not None and not settings_file.exists():
        raise ConfigurationError(f"Settings file not found: {settings_file}")
    project_root = settings_file.parent.parent.resolve()
    AppSettings._yaml_file_override = settings_file
    try:
        settings = AppSettings()
    except (ValidationError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Invalid settings in {settings_file}: {exc}") from exc
    finally:
        AppSettings._yaml_file_override = None

    if require_markets and not settings.markets.codes:
        raise ConfigurationError(f"No markets configured (markets.codes is empty) in {settings_file}")

    resolved_paths = settings.paths.resolved(project_root=project_root)
    return settings.model_copy(update={"paths": resolved_paths})
