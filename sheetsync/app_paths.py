"""Locations of settings, history, snapshots and logs on disk."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

HOME_ENV_VAR = "SHEETSYNC_HOME"
_PLATFORM_ENV_VARS = ("LOCALAPPDATA", "APPDATA", "XDG_DATA_HOME")


def base_directory(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Return the application directory.

    ``SHEETSYNC_HOME`` wins; otherwise the first platform data directory that
    is set is used, falling back to ``~/.sheetsync``.
    """

    env = os.environ if environ is None else environ
    override = env.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser().resolve()
    for name in _PLATFORM_ENV_VARS:
        value = env.get(name)
        if value:
            return Path(value).expanduser().resolve() / "sheetsync"
    return Path.home().resolve() / ".sheetsync"


APP_DIR: Path = base_directory()
SNAPSHOT_DIR: Path = APP_DIR / "snapshots"
LOG_DIR: Path = APP_DIR / "logs"


def _under(root: Path, parts: tuple[str, ...]) -> Path:
    target = root.joinpath(*parts)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target


def data_path(*parts: str) -> Path:
    """Return a path inside :data:`APP_DIR` whose parent directory exists."""

    return _under(APP_DIR, parts)


def logs_path(*parts: str) -> Path:
    return _under(LOG_DIR, parts)


__all__ = [
    "APP_DIR",
    "HOME_ENV_VAR",
    "LOG_DIR",
    "SNAPSHOT_DIR",
    "base_directory",
    "data_path",
    "logs_path",
]
