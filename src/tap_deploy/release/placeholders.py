"""Emergency placeholder assets for releases with no build output."""

from __future__ import annotations

import json
from pathlib import Path

from tap_deploy.utils.paths import write_marker_file
from tap_deploy.utils.time_utils import now_utc

PLACEHOLDER_INDEX = "index.html"
PLACEHOLDER_MARKER = ".tap-deploy-placeholder.json"
PLACEHOLDER_FILE_NAMES: frozenset[str] = frozenset({PLACEHOLDER_INDEX, PLACEHOLDER_MARKER})


def render_placeholder_index(market: str, version: str) -> str:
    """Return the deterministic placeholder page for a market/version."""

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Maintenance</title>
<meta name="tap-market" content="{market}">
<meta name="tap-release" content="{version}">
</head>
<body>
<h1>We'll be right back</h1>
<p>This site is being updated. Please try again in a few minutes.</p>
</body>
</html>
"""


def write_emergency_placeholders(version_dir: Path, *, market: str, version: str) -> tuple[Path, ...]:
    """Write the placeholder page and a marker describing why it exists."""

    index_path = write_marker_file(version_dir / PLACEHOLDER_INDEX, render_placeholder_index(market, version))
    marker_payload = {
        "market": market,
        "version": version,
        "reason": "build produced no files",
        "created_ts": now_utc().isoformat(),
    }
    marker_path = write_marker_file(
        version_dir / PLACEHOLDER_MARKER,
        json.dumps(marker_payload, indent=2, sort_keys=True),
    )
    return index_path, marker_path


def _is_placeholder_file(path: Path, version_dir: Path, market: str, version: str) -> bool:
    if path.parent != version_dir or path.name not in PLACEHOLDER_FILE_NAMES:
        return False
    if path.name == PLACEHOLDER_MARKER:
        return True
    try:
        return path.read_text(encoding="utf-8").rstrip() == render_placeholder_index(market, version).rstrip()
    except UnicodeDecodeError:
        return False


def real_output_files(version_dir: Path, *, market: str, version: str) -> list[Path]:
    """List files under ``version_dir`` that were not written as placeholders."""

    if not version_dir.is_dir():
        return []
    return [
        candidate
        for candidate in sorted(version_dir.rglob("*"))
        if candidate.is_file() and not _is_placeholder_file(candidate, version_dir, market, version)
    ]


def placeholder_files(version_dir: Path) -> tuple[Path, ...]:
    """Return placeholder files currently present in ``version_dir``."""

    return tuple(
        version_dir / name for name in sorted(PLACEHOLDER_FILE_NAMES) if (version_dir / name).is_file()
    )


def stale_placeholder_files(version_dir: Path, *, market: str, version: str) -> tuple[Path, ...]:
    """Placeholder files in ``version_dir`` that still carry placeholder content."""

    return tuple(
        candidate
        for candidate in placeholder_files(version_dir)
        if _is_placeholder_file(candidate, version_dir, market, version)
    )
