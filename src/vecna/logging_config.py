"""Logging configuration for vecna."""

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from vecna.config import get_config_dir

LOG_FILENAME = "vecna.log"


def setup_logging(
    verbose: bool = False, debug: bool = False, log_dir: Optional[Path] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, show INFO level messages.
        debug: If True, show DEBUG level messages and also write them to a log file.
        log_dir: Directory of the debug log file. Defaults to the config dir.
    """
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if debug:
        log_dir = log_dir or get_config_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / LOG_FILENAME, mode="w")  # Overwrite each run
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root_logger.addHandler(file_handler)

    # stdout stays clean for `cd $(vecna switch ...)`
    console_handler = RichHandler(
        console=Console(stderr=True),
        show_time=debug,
        show_path=debug,
        markup=False,
    )
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    # GitPython logs every command at DEBUG
    logging.getLogger("git").setLevel(logging.INFO if debug else logging.WARNING)
