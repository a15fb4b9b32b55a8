"""
Logging configuration for the command-line entry points.
"""

import logging

from rich.logging import RichHandler


def setup_logging(debug: bool = False) -> None:
    """Route log records through rich and set the root level.

    Args:
        debug: Whether to enable debug logging
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(RichHandler(show_path=False, rich_tracebacks=True))
    root_logger.setLevel(logging.DEBUG if debug else logging.WARNING)

    # uvicorn and httpx are chatty at INFO
    if not debug:
        for name in ("httpx", "httpcore", "uvicorn.access"):
            logging.getLogger(name).setLevel(logging.WARNING)
