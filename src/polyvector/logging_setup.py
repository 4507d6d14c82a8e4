"""Logging configuration for the command-line entry point."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "WARNING", console: Console | None = None) -> None:
    """Route ``polyvector`` loggers through a rich handler.

    Library code only creates module loggers; handlers are installed here so
    that embedding applications keep control of their own logging setup.
    """
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    package_logger = logging.getLogger("polyvector")
    package_logger.handlers = [handler]
    package_logger.setLevel(level.upper())
    package_logger.propagate = False
