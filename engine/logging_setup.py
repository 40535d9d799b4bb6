"""Centralized logging configuration."""

from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "WARNING", console: Optional[Console] = None) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))

    handler = RichHandler(
        console=console,
        show_path=False,
        rich_tracebacks=True,
        log_time_format="%H:%M:%S",
    )
    handler.setFormatter(logging.Formatter("%(name)s - %(message)s"))

    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)

    root_logger.addHandler(handler)

    # Third-party chatter stays at WARNING unless explicitly debugging.
    if root_logger.level > logging.DEBUG:
        for noisy in ("aiohttp", "websockets", "asyncio"):
            logging.getLogger(noisy).setLevel(logging.WARNING)
