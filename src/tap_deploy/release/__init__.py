"""Release publication."""

from tap_deploy.release.placeholders import (
    PLACEHOLDER_FILE_NAMES,
    real_output_files,
    stale_placeholder_files,
    write_emergency_placeholders,
)
from tap_deploy.release.publisher import (
    ReleasePublisher,
    list_release_dirs,
    pointer_targets,
    prune_old_releases,
    read_pointer,
    swap_pointer,
)

__all__ = [
    "PLACEHOLDER_FILE_NAMES",
    "real_output_files",
    "stale_placeholder_files",
    "write_emergency_placeholders",
    "ReleasePublisher",
    "list_release_dirs",
    "pointer_targets",
    "prune_old_releases",
    "read_pointer",
    "swap_pointer",
]
