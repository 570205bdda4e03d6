"""
Courier - Logging configuration for the entry points.

Library modules only create module loggers; the client and relay
entry points call setup_logging() once.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from .config import Config
from .constants import LOG_DATE_FORMAT, LOG_FORMAT


def setup_logging(config: Config, debug: bool = False, console: Optional[Console] = None) -> None:
    """
    Configure the root logger from the [logging] config section.

    Args:
        config: Loaded configuration
        debug: Force DEBUG level
        console: Console for the rich handler (default: stderr)
    """
    level_name = "DEBUG" if debug else str(config.get("logging", "level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    if config.get("logging", "rich", True):
        handler: logging.Handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=debug,
            rich_tracebacks=True,
            log_time_format=f"[{LOG_DATE_FORMAT}]",
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
