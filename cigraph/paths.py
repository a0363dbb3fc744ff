"""Locate the repo-local `.cigraph` settings directory."""
from __future__ import annotations

from pathlib import Path
from typing import Optional


CIGRAPH_DIRNAME = ".cigraph"
GIT_DIRNAME = ".git"


def find_repo_root(start_path: Optional[Path] = None) -> Optional[Path]:
    """Walk up from `start_path` to the directory holding `.cigraph` next to `.git`.

    A `.cigraph` folder without a sibling `.git` is ignored and the search
    continues upwards.

    Args:
        start_path: Starting directory (defaults to current working directory)

    Returns:
        Path to repo root (directory containing .cigraph), or None if not found

    Example:
        >>> # From REPO/ci/jobs, finds REPO
        >>> root = find_repo_root()
        >>> print(root)
        /path/to/REPO
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()
    for parent in [current] + list(current.parents):
        settings_dir = parent / CIGRAPH_DIRNAME
        if settings_dir.is_dir() and (parent / GIT_DIRNAME).is_dir():
            return parent
    return None


def get_repo_config_path(start_path: Optional[Path] = None) -> Optional[Path]:
    """Get the repo-local settings file.

    Args:
        start_path: Starting directory (defaults to current working directory)

    Returns:
        Path to .cigraph/config, or None if not inside a repo
    """
    root = find_repo_root(start_path)
    if root:
        return root / CIGRAPH_DIRNAME / "config"
    return None
