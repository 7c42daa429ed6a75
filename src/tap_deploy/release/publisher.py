"""Materialise a release directory and swap the live pointer onto it."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from uuid import uuid4

from tap_deploy.errors import PublishIOError
from tap_deploy.models import DeploymentPaths, PublishResult
from tap_deploy.release.placeholders import (
    placeholder_files,
    real_output_files,
    stale_placeholder_files,
    write_emergency_placeholders,
)

LOGGER = logging.getLogger(__name__)


def _temp_link_path(pointer_path: Path) -> Path:
    """Unique temp link name beside the pointer so the final rename is atomic."""

    return pointer_path.parent / f".{pointer_path.name}.{uuid4().hex}.tmp"


def read_pointer(paths: DeploymentPaths) -> Path | None:
    """Return the directory the live pointer resolves to, or None."""

    pointer = paths.pointer_path
    if not pointer.is_symlink():
        return None
    target = pointer.resolve(strict=False)
    return target if target.exists() else None


def pointer_targets(paths: DeploymentPaths, version_dir: Path) -> bool:
    """True when the pointer resolves to ``version_dir``."""

    current = read_pointer(paths)
    return current is not None and current == version_dir.resolve(strict=False)


def swap_pointer(pointer_path: Path, version_dir: Path) -> None:
    """Repoint ``pointer_path`` at ``version_dir`` with a single rename.

    The new link is created under a temporary name and renamed over the old
    one, so readers always see either the previous or the new target.
    """

    if pointer_path.exists() and not pointer_path.is_symlink():
        raise PublishIOError(f"{pointer_path} exists and is not a symlink")

    temp_link = _temp_link_path(pointer_path)
    target = os.path.relpath(version_dir, start=pointer_path.parent)
    try:
        temp_link.symlink_to(target, target_is_directory=True)
        os.replace(temp_link, pointer_path)
    except OSError as exc:
        raise PublishIOError(f"failed to swap {pointer_path} -> {version_dir}: {exc}") from exc
    finally:
        if temp_link.is_symlink():
            temp_link.unlink()


class ReleasePublisher:
    """Publishes one market's release. At most one in-flight publish per market."""

    def __init__(self, *, keep_releases: int = 0, logger: logging.Logger | None = None) -> None:
        self.keep_releases = keep_releases
        self.logger = logger or LOGGER

    def publish(self, paths: DeploymentPaths, version: str) -> PublishResult:
        """Ensure the version dir is servable and make it live.

        Idempotent for a given (market, version): a re-run creates nothing new
        and leaves the pointer where it is.
        """

        version_dir = paths.dist_dir / version
        try:
            version_dir.mkdir(parents=True, exist_ok=True)
            real_files = real_output_files(version_dir, market=paths.market, version=version)
            if real_files:
                for stale in stale_placeholder_files(version_dir, market=paths.market, version=version):
                    stale.unlink()
                    self.logger.info("publish.placeholder_removed market=%s path=%s", paths.market, stale)
                fallback_used = False
                placeholders: tuple[Path, ...] = ()
            else:
                placeholders = placeholder_files(version_dir)
                if len(placeholders) < 2:
                    placeholders = write_emergency_placeholders(version_dir, market=paths.market, version=version)
                    self.logger.warning(
                        "publish.emergency_fallback market=%s version=%s version_dir=%s",
                        paths.market,
                        version,
                        version_dir,
                    )
                fallback_used = True
        except OSError as exc:
            raise PublishIOError(f"failed to prepare {version_dir}: {exc}", market=paths.market) from exc

        swapped = False
        if not pointer_targets(paths, version_dir):
            swap_pointer(paths.pointer_path, version_dir)
            swapped = True
            self.logger.info(
                "publish.pointer_swapped market=%s pointer=%s target=%s",
                paths.market,
                paths.pointer_path,
                version_dir,
            )
        else:
            self.logger.info("publish.pointer_unchanged market=%s target=%s", paths.market, version_dir)

        if self.keep_releases > 0:
            prune_old_releases(paths, keep=self.keep_releases, logger=self.logger)

        return PublishResult(
            market=paths.market,
            version_published=version,
            version_dir=version_dir,
            pointer_path=paths.pointer_path,
            symlink_swapped=swapped,
            emergency_fallback_used=fallback_used,
            placeholder_files=tuple(placeholders),
        )


def list_release_dirs(paths: DeploymentPaths) -> list[Path]:
    """Version directories under ``dist``, oldest first."""

    if not paths.dist_dir.is_dir():
        return []
    candidates = [
        entry
        for entry in paths.dist_dir.iterdir()
        if entry.is_dir() and not entry.is_symlink() and not entry.name.startswith(".")
    ]
    return sorted(candidates, key=lambda entry: (entry.stat().st_mtime, entry.name))


def prune_old_releases(
    paths: DeploymentPaths,
    *,
    keep: int,
    logger: logging.Logger | None = None,
) -> list[Path]:
    """Remove the oldest releases beyond ``keep``; never the live one."""

    effective_logger = logger or LOGGER
    if keep <= 0:
        return []
    live = read_pointer(paths)
    releases = [entry for entry in list_release_dirs(paths) if entry.resolve() != live]
    # the live release counts toward ``keep``
    budget = keep - 1 if live is not None else keep
    excess = releases[: max(0, len(releases) - budget)]
    removed: list[Path] = []
    for entry in excess:
        try:
            shutil.rmtree(entry)
        except OSError as exc:
            effective_logger.warning("publish.prune_failed path=%s error=%s", entry, exc)
            continue
        removed.append(entry)
    if removed:
        effective_logger.info("publish.pruned market=%s removed=%s", paths.market, [entry.name for entry in removed])
    return removed
