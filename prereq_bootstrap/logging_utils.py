from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

DEFAULT_LOG_PATH = os.path.join(tempfile.gettempdir(), "prereq-bootstrap.log")
FALLBACK_LOG_NAME = "prereq-bootstrap.log"
# Overrides the level passed to configure_logging (DEBUG, INFO, ...).
LEVEL_ENV = "PREREQ_BOOTSTRAP_LOG_LEVEL"

_FORMAT = logging.Formatter(
    fmt="%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S%z",
)


def _open_file_handler(path: str) -> logging.Handler:
    Path(os.path.dirname(path) or ".").mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(_FORMAT)
    return handler


def _level(default: int) -> int:
    name = os.environ.get(LEVEL_ENV, "").strip().upper()
    value = logging.getLevelName(name) if name else default
    return value if isinstance(value, int) else default


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Configure the root logger for a bootstrap run; returns the log file actually used.

    Every resolution decision, trust verdict and install status is logged so a
    failed bootstrap can be diagnosed afterwards. When the requested file
    cannot be opened (locked-down temp folder, read-only media) the log goes
    to the current working directory instead.
    """

    root = logging.getLogger()
    root.setLevel(_level(level))

    # Calling twice must not duplicate handlers.
    if getattr(root, "_prereq_bootstrap_configured", False):
        return getattr(root, "_prereq_bootstrap_log_path", log_path)

    chosen_path: Optional[str] = None
    for candidate in (log_path, str(Path.cwd() / FALLBACK_LOG_NAME)):
        try:
            root.addHandler(_open_file_handler(candidate))
        except OSError:
            continue
        chosen_path = candidate
        break

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(_FORMAT)
        root.addHandler(console)

    setattr(root, "_prereq_bootstrap_configured", True)
    setattr(root, "_prereq_bootstrap_log_path", chosen_path or log_path)

    log = logging.getLogger(__name__)
    if chosen_path is None:
        log.warning("No writable log file (requested=%s); logging to console only", log_path)
    else:
        log.info("Logging initialized (requested=%s, actual=%s)", log_path, chosen_path)
    return chosen_path or log_path
