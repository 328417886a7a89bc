"""Logging helpers shared by the assistant entry points."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILENAME = "assistant.log"


def setup_logging(log_dir: str, level: int = logging.INFO) -> str:
    """Configure console and file logging under ``log_dir``.

    Safe to call more than once: handlers are only attached on the first call
    for a given log file. Returns the log file path.
    """
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.abspath(os.path.join(log_dir, LOG_FILENAME))

    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    has_file = any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == log_path
        for handler in root.handlers
    )
    if not has_file:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    has_console = any(
        type(handler) is logging.StreamHandler for handler in root.handlers
    )
    if not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    logging.getLogger(__name__).debug("Logging configured at %s", log_path)
    return log_path
