"""Logging configuration for Muesli."""

import logging
import sys
from pathlib import Path

# Create logger
logger = logging.getLogger("muesli")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application.

    Safe to call more than once: handlers from an earlier call are replaced.

    Args:
        verbose: If True, log DEBUG to every handler. Otherwise INFO.
    """
    level = logging.DEBUG if verbose else logging.INFO

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    # File handler (optional - only if the data dir exists)
    log_dir = Path.home() / ".local" / "share" / "muesli"
    if log_dir.exists():
        file_handler = logging.FileHandler(log_dir / "muesli.log")
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        logger.addHandler(file_handler)

    logger.setLevel(level)
