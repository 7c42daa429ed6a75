"""Keep a local checkout in line with a remote branch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from tap_deploy.system.commands import Runner

LOGGER = logging.getLogger(__name__)

GitStatus = Literal["clean", "updated", "cloned", "failed"]


@dataclass(frozen=True, slots=True)
class GitOutcome:
    path: Path
    status: GitStatus
    head_before: str | None = None
    head_after: str | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


@dataclass(frozen=True, slots=True)
class CheckoutInfo:
    """Read-only description of a checkout."""

    path: Path
    exists: bool
    is_git_repo: bool
    branch: str | None = None
    last_commit: str | None = None
    remote_url: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "path": str(self.path),
            "exists": self.exists,
            "is_git_repo": self.is_git_repo,
            "branch": self.branch,
            "last_commit": self.last_commit,
            "remote_url": self.remote_url,
        }


def _head(path: Path, runner: Runner, timeout_sec: float | None) -> str | None:
    result = runner.run(["git", "rev-parse", "HEAD"], cwd=path, timeout_sec=timeout_sec)
    if not result.ok:
        return None
    return result.stdout.strip() or None


def ensure_checkout(
    path: Path,
    remote: str,
    branch: str,
    *,
    runner: Runner,
    timeout_sec: float | None = 300.0,
    logger: logging.Logger | None = None,
) -> GitOutcome:
    """Clone when absent, otherwise fast-forward the checkout to ``branch``."""

    effective_logger = logger or LOGGER
    if not (path / ".git").exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        result = runner.run(
            ["git", "clone", "--branch", branch, remote, str(path)],
            timeout_sec=timeout_sec,
        )
        if not result.ok:
            reason = result.failure_reason()
            effective_logger.error("git.clone_failed path=%s reason=%s", path, reason)
            return GitOutcome(path=path, status="failed", reason=reason)
        effective_logger.info("git.cloned path=%s branch=%s", path, branch)
        return GitOutcome(path=path, status="cloned", head_after=_head(path, runner, timeout_sec))

    head_before = _head(path, runner, timeout_sec)
    for args in (
        ["git", "fetch", "origin", branch],
        ["git", "checkout", branch],
        ["git", "pull", "--ff-only", "origin", branch],
    ):
        result = runner.run(args, cwd=path, timeout_sec=timeout_sec)
        if not result.ok:
            reason = result.failure_reason()
            effective_logger.error("git.sync_failed path=%s reason=%s", path, reason)
            return GitOutcome(path=path, status="failed", head_before=head_before, reason=reason)

    head_after = _head(path, runner, timeout_sec)
    status: GitStatus = "clean" if head_before == head_after else "updated"
    effective_logger.info("git.synced path=%s status=%s head=%s", path, status, head_after)
    return GitOutcome(path=path, status=status, head_before=head_before, head_after=head_after)


def inspect_checkout(path: Path, *, runner: Runner, timeout_sec: float | None = 30.0) -> CheckoutInfo:
    """Report branch, last commit, and origin URL of a checkout."""

    if not path.exists():
        return CheckoutInfo(path=path, exists=False, is_git_repo=False)
    if not (path / ".git").exists():
        return CheckoutInfo(path=path, exists=True, is_git_repo=False)

    def _query(*args: str) -> str | None:
        result = runner.run(["git", *args], cwd=path, timeout_sec=timeout_sec)
        if not result.ok:
            return None
        return result.stdout.strip() or None

    return CheckoutInfo(
        path=path,
        exists=True,
        is_git_repo=True,
        branch=_query("branch", "--show-current"),
        last_commit=_query("log", "-1", "--oneline"),
        remote_url=_query("remote", "get-url", "origin"),
    )
