from __future__ import annotations

import os
from pathlib import Path


def work_root() -> Path:
    """Target project root (HANDS_ROOT, falling back to cwd)."""

    root = os.environ.get("HANDS_ROOT") or str(Path.cwd())
    return Path(root).expanduser().resolve()


def hands_dir(root: Path | None = None) -> Path:
    return (root or work_root()) / ".hands"


def tracker_path(root: Path | None = None) -> Path:
    """Installed-state record for a project (.hands/state/installed.json)."""

    return hands_dir(root) / "state" / "installed.json"


def manifest_path(root: Path | None = None) -> Path:
    return (root or work_root()) / "hands.toml"


def default_catalog_dir() -> Path:
    override = os.environ.get("HANDS_CATALOG")
    if override:
        return Path(override).expanduser().resolve()
    return Path.home().resolve() / ".hands" / "catalog"
