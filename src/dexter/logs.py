"""Per-session logging setup."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from dexter.config import DEXTER_LOGS
from dexter.redaction import RedactingFilter

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def configure_logging(verbose: bool = False, log_dir: Path | None = None) -> Path | None:
    """Send dexter's logs to a session file, and to stderr when verbose.

    Returns the log file path, or None if the directory is not writable.
    Secrets are masked before any handler sees a record.
    """
    log_dir = log_dir or DEXTER_LOGS
    root = logging.getLogger("dexter")
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)
    redactor = RedactingFilter()
    log_path: Path | None = log_dir / f"session-{time.strftime('%Y%m%d-%H%M%S')}.log"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
    except OSError:
        log_path = None
    else:
        file_handler.setFormatter(formatter)
        file_handler.addFilter(redactor)
        root.addHandler(file_handler)

    if verbose:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        stream.addFilter(redactor)
        root.addHandler(stream)
    elif log_path is None:
        root.addHandler(logging.NullHandler())
    return log_path
