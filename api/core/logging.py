"""Logging configuration"""

import logging

from rich.console import Console
from rich.logging import RichHandler

from api.core.config import Settings

# Libraries that log full request URLs (which may carry webhook tokens) at INFO
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def setup_logging(settings: Settings) -> None:
    """Configure application logging with Rich handler"""

    level = getattr(logging, settings.log_level, logging.INFO)

    console = Console(force_terminal=True, width=120)
    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
        tracebacks_width=120,
    )
    rich_handler.setFormatter(logging.Formatter(fmt="%(message)s", datefmt="[%Y-%m-%d %H:%M:%S]"))

    # force=True: uvicorn configures the root logger first
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%Y-%m-%d %H:%M:%S]",
        handlers=[rich_handler],
        force=True,
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging: {settings.log_level} | Env: {settings.environment}")
