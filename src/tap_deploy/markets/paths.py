"""Per-market path resolution."""

from __future__ import annotations

from itertools import combinations
from typing import Iterable

from tap_deploy.config import CacheMode, PathsConfig, ReleaseConfig
from tap_deploy.models import DeploymentPaths


def resolve_paths(
    market: str,
    version: str,
    *,
    paths_config: PathsConfig,
    release_config: ReleaseConfig,
    cache_mode: CacheMode = "per_market",
) -> DeploymentPaths:
    """Derive the backend/frontend/release locations for one market.

    Pure and deterministic: every location is keyed by the market code, so two
    distinct markets never share a checkout or release directory. In
    ``per_market`` cache mode each market also gets its own cache subdirectory;
    in ``shared_locked`` mode the cache roots are shared.
    """

    backend_dir = paths_config.backend_base / market
    frontend_dir = paths_config.frontend_base / market
    dist_dir = frontend_dir / release_config.dist_dir_name
    if cache_mode == "per_market":
        backend_cache_dir = paths_config.backend_cache_root / market
        frontend_cache_dir = paths_config.frontend_cache_root / market
    else:
        backend_cache_dir = paths_config.backend_cache_root
        frontend_cache_dir = paths_config.frontend_cache_root
    return DeploymentPaths(
        market=market,
        version=version,
        backend_dir=backend_dir,
        frontend_dir=frontend_dir,
        dist_dir=dist_dir,
        version_dir=dist_dir / version,
        pointer_path=dist_dir / release_config.pointer_name,
        backend_cache_dir=backend_cache_dir,
        frontend_cache_dir=frontend_cache_dir,
    )


def resolve_all_paths(
    markets: Iterable[str],
    version: str,
    *,
    paths_config: PathsConfig,
    release_config: ReleaseConfig,
    cache_mode: CacheMode = "per_market",
) -> dict[str, DeploymentPaths]:
    """Resolve paths for every market, keeping configured order."""

    return {
        market: resolve_paths(
            market,
            version,
            paths_config=paths_config,
            release_config=release_config,
            cache_mode=cache_mode,
        )
        for market in markets
    }


def check_path_collisions(resolved: dict[str, DeploymentPaths]) -> list[tuple[str, str]]:
    """Return market pairs whose checkout or release directories coincide."""

    collisions: list[tuple[str, str]] = []
    for left, right in combinations(resolved.values(), 2):
        if (
            left.backend_dir == right.backend_dir
            or left.frontend_dir == right.frontend_dir
            or left.version_dir == right.version_dir
        ):
            collisions.append((left.market, right.market))
    return collisions
