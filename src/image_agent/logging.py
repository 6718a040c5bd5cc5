"""
Logging for the image agent.

All modules log through children of the ``image_agent`` logger; the CLI
and server configure it once at startup with ``setup_logging``.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

_root_logger = logging.getLogger("image_agent")

# HTTP client loggers that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "openai")

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(
    level: str | int = "INFO",
    stream: TextIO | None = None,
    file: str | None = None,
) -> None:
    """
    Configure the ``image_agent`` logger.

    Args:
        level: Level name or number. Unknown names fall back to INFO.
        stream: Output stream (defaults to stderr)
        file: Optional file that receives the same records

    Below DEBUG the provider HTTP clients are held at WARNING so request
    lines do not drown out turn progress.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    _root_logger.setLevel(level)
    _root_logger.handlers.clear()
    formatter = logging.Formatter(DEFAULT_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stderr)]
    if file:
        handlers.append(logging.FileHandler(file))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        _root_logger.addHandler(handler)

    noisy_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    """Child logger for a submodule, e.g. ``get_logger("orchestrator")``."""
    if name.startswith("image_agent."):
        return logging.getLogger(name)
    return logging.getLogger(f"image_agent.{name}")
