"""Process-wide logging setup for the command line tools."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from sheetsync import app_paths

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_LOG_PATH: Optional[Path] = None


def _has_file_handler(logger: logging.Logger, path: Path) -> bool:
    return any(
        isinstance(handler, logging.FileHandler) and getattr(handler, "baseFilename", None) == str(path)
        for handler in logger.handlers
    )


def configure_logging(
    level: int = logging.INFO,
    *,
    log_path: Optional[Path] = None,
    console: bool = False,
) -> Path:
    """Send sync logs to ``sheetsync.log`` and return the file's path.

    Parameters
    ----------
    level:
        Minimum level for the root logger. Repeated calls may lower it but
        never raise it.
    log_path:
        Explicit log file. Defaults to ``sheetsync.log`` in the application
        log directory. Once a default file is installed later calls without
        ``log_path`` reuse it.
    console:
        Also echo records to stderr, for ``--verbose`` runs.
    """

    global _LOG_PATH

    root_logger = logging.getLogger()
    root_logger.setLevel(min(root_logger.level, level) if root_logger.handlers else level)

    if log_path is None and _LOG_PATH is not None:
        target = _LOG_PATH
    else:
        target = Path(log_path) if log_path is not None else app_paths.logs_path("sheetsync.log")
        target.parent.mkdir(parents=True, exist_ok=True)
        target = target.resolve()

    formatter = logging.Formatter(LOG_FORMAT)
    if not _has_file_handler(root_logger, target):
        file_handler = logging.FileHandler(target, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if console and not any(getattr(handler, "name", None) == "sheetsync-console" for handler in root_logger.handlers):
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.set_name("sheetsync-console")
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(level)
        root_logger.addHandler(stream_handler)

    if log_path is None:
        _LOG_PATH = target
    root_logger.debug("Logging configured. Writing to %s", target)
    return target


__all__ = ["LOG_FORMAT", "configure_logging"]
