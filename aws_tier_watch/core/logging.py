"""Logging setup for the CLI."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "aws_tier_watch"


def configure_logging(verbose: bool = False, console: Optional[Console] = None) -> logging.Logger:
    """Attach a rich handler to the package logger.
    
    Args:
        verbose: Log at DEBUG instead of WARNING.
        console: Optional console to write to (defaults to stderr).
        
    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    
    # Calling twice (e.g. repeated CliRunner invocations) must not stack handlers
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    return logger
