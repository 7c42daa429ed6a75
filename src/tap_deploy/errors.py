"""Deployment error taxonomy.

Each error declares what it is fatal to: the whole ``run``, a single
``market``, or ``none`` (recorded as data and the market continues).
"""

from __future__ import annotations

from typing import Literal

FatalScope = Literal["run", "market", "none"]


class DeployError(Exception):
    """Base class for deployment errors."""

    fatal_to: FatalScope = "market"

    def __init__(self, message: str, *, market: str | None = None) -> None:
        super().__init__(message)
        self.market = market

    @property
    def reason(self) -> str:
        return f"{type(self).__name__}: {self}"


class ConfigurationError(DeployError):
    """Settings could not be loaded or are unusable."""

    fatal_to: FatalScope = "run"


class PreflightFailed(DeployError):
    """A pre-install check (e.g. free disk space) did not pass."""


class MissingLockFile(DeployError):
    """The backend dependency lock file is absent."""


class DependencyInstallFailed(DeployError):
    """Every install strategy failed."""

    fatal_to: FatalScope = "none"


class BuildFailed(DeployError):
    """Both build commands failed; publish falls back to placeholders."""

    fatal_to: FatalScope = "none"


class CommandTimeout(DeployError):
    """An external command exceeded its time budget."""

    fatal_to: FatalScope = "none"


class PublishIOError(DeployError):
    """Filesystem error while materialising or swapping a release."""


class SourceSyncFailed(DeployError):
    """A required checkout is missing and could not be cloned."""
