"""
Logging setup for dsoul

- Log file: ~/.dsoul/logs/dsoul.log (always DEBUG)
- Console (stderr): WARNING, or DEBUG when DSOUL_DEBUG=1
- format_fields(): key=value rendering for per-gateway / per-skill log lines
"""

import logging
import os
import sys
from typing import Any

from dsoul.core.storage.paths import logs_dir

DEBUG_ENV_VAR = "DSOUL_DEBUG"

ROOT_LOGGER = "dsoul"


def debug_enabled() -> bool:
    return os.environ.get(DEBUG_ENV_VAR, "").strip().lower() in ("1", "true", "yes", "on")


def format_fields(**fields: Any) -> str:
    """
    Format fields as key=value pairs, quoting strings with spaces

    None values are dropped so optional context can be passed unconditionally.
    """
    parts = []
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, float):
            value = round(value, 2)
        if isinstance(value, str) and " " in value:
            parts.append(f'{key}="{value}"')
        else:
            parts.append(f"{key}={value}")
    return " ".join(parts)


def setup_logging(log_to_file: bool = True) -> logging.Logger:
    """
    Configure the dsoul logger hierarchy

    Safe to call more than once: handlers are only attached once.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    console_level = logging.DEBUG if debug_enabled() else logging.WARNING

    has_console = False
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setLevel(console_level)
            has_console = True

    if not has_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(console_level)
        console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(console_handler)

    if log_to_file:
        log_dir = logs_dir()
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create log directory {log_dir}: {e}")
            return logger

        log_file = log_dir / "dsoul.log"
        has_file_handler = any(
            isinstance(h, logging.FileHandler) and h.baseFilename == str(log_file)
            for h in logger.handlers
        )
        if not has_file_handler:
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            file_handler.setLevel(logging.DEBUG)
            logger.addHandler(file_handler)

    return logger
