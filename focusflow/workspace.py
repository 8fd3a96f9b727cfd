"""Workspace root and path helpers for FocusFlow."""

from __future__ import annotations

import os
from pathlib import Path


def workspace_root() -> Path:
    """Get the workspace root directory (contains config.yaml and data/)."""
    return Path(
        os.environ.get("FOCUSFLOW_ROOT", str(Path.home() / ".focusflow"))
    ).expanduser().resolve()


# ── Path helpers ──────────────────────────────────────────────

def config_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "config.yaml"


def data_dir(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "data"


def collection_path(name: str, root: Path | None = None) -> Path:
    return data_dir(root) / f"{name}.json"


def lock_dir(root: Path | None = None) -> Path:
    return data_dir(root) / ".locks"


def log_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "logs" / "focusflow.log"
