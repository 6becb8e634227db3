"""pwshtrainer: a menu-driven terminal trainer for PowerShell."""

from __future__ import annotations

import tomllib
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

__all__ = ["__version__"]

DIST_NAME = "pwshtrainer"


def _source_tree_version() -> str | None:
    """Read `[project].version` from the nearest pyproject.toml when running from a checkout."""
    for base in Path(__file__).resolve().parents:
        pyproject = base / "pyproject.toml"
        if not pyproject.is_file():
            continue
        try:
            data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError:
            return None
        project = data.get("project", {})
        if project.get("name") != DIST_NAME:
            continue
        found = project.get("version")
        return str(found) if found else None
    return None


def _resolve_version() -> str:
    from_tree = _source_tree_version()
    if from_tree is not None:
        return from_tree
    try:
        return version(DIST_NAME)
    except PackageNotFoundError:
        return "0+unknown"


__version__ = _resolve_version()
