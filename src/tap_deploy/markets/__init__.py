"""Market path resolution."""

from tap_deploy.markets.paths import check_path_collisions, resolve_all_paths, resolve_paths

__all__ = [
    "check_path_collisions",
    "resolve_all_paths",
    "resolve_paths",
]
