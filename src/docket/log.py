"""Logging setup for the docket CLI.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed here, once per process, by the CLI entry point.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_LOGGER_NAME = "docket"


def configure_logging(level: int = logging.INFO) -> None:
    """Route ``docket.*`` log records through a RichHandler on stderr.

    Safe to call more than once; the previous handler is replaced.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    # Keep LiteLLM's own loggers quiet unless debugging.
    logging.getLogger("LiteLLM").setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)
