"""Logging setup for the API process."""

from __future__ import annotations

import logging
import sys
from typing import Optional


def setup_logging(level: int | str = logging.INFO, log_file: Optional[str] = None) -> None:
    """Configure the root logger with a console handler and an optional file handler.

    Service modules log through ``logging.getLogger(__name__)`` and inherit this
    configuration. Calling it again replaces the handlers instead of stacking them.
    """
    root = logging.getLogger()
    root.setLevel(level)

    if root.hasHandlers():
        root.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    logging.getLogger(__name__).info("Logging initialized.")
