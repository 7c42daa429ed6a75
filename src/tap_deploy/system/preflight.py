"""Pre-install host checks."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class DiskCheck:
    path: Path
    free_bytes: int
    min_free_bytes: int

    @property
    def ok(self) -> bool:
        return self.free_bytes >= self.min_free_bytes


def check_disk_space(path: Path, min_free_bytes: int) -> DiskCheck:
    """Measure free space on the filesystem holding ``path`` (or its nearest existing parent)."""

    probe = path
    while not probe.exists() and probe != probe.parent:
        probe = probe.parent
    usage = shutil.disk_usage(probe)
    return DiskCheck(path=path, free_bytes=int(usage.free), min_free_bytes=min_free_bytes)
