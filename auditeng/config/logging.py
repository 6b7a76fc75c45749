"""
Logging - Root logger configuration for command-line entry points.

Library modules only create module loggers; handlers are attached here.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

__all__ = ["setup_logging"]


def setup_logging(level: str = "INFO", console: Console | None = None) -> None:
    """
    Configure the root logger with a rich handler.

    Args:
        level: Log level name ("DEBUG", "INFO", ...)
        console: Console to write to (stderr by default)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(name)s - %(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console or Console(stderr=True),
                rich_tracebacks=True,
                show_path=False,
            )
        ],
        force=True,
    )
    # Third-party clients are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
