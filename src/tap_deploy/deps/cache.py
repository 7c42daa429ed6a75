"""Guarding shared dependency caches."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from tap_deploy.config import CacheMode


class CacheGuard:
    """Serialise writers on shared cache roots.

    In ``per_market`` mode every market owns its cache subdirectory and no lock
    is taken. In ``shared_locked`` mode a lock per resolved cache root is held
    for the whole install.
    """

    def __init__(self, mode: CacheMode = "per_market") -> None:
        self.mode = mode
        self._meta_lock = threading.Lock()
        self._root_locks: dict[Path, threading.Lock] = {}

    def _get_root_lock(self, cache_dir: Path) -> threading.Lock:
        key = cache_dir.resolve()
        with self._meta_lock:
            if key not in self._root_locks:
                self._root_locks[key] = threading.Lock()
            return self._root_locks[key]

    @contextmanager
    def hold(self, cache_dir: Path) -> Iterator[Path]:
        cache_dir.mkdir(parents=True, exist_ok=True)
        if self.mode == "per_market":
            yield cache_dir
            return
        with self._get_root_lock(cache_dir):
            yield cache_dir
