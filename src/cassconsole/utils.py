"""Utility functions for the console backend"""
import logging
import sys
from pathlib import Path

from .config import LoggingConfig


def setup_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """Setup logging configuration."""
    config = config or LoggingConfig()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if config.file:
        # Ensure log directory exists
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.file))

    logging.basicConfig(
        level=getattr(logging, config.level.upper(), logging.INFO),
        format=config.format,
        handlers=handlers,
        force=True,
    )
    return logging.getLogger("cassconsole")


def format_bytes(num_bytes: int | float | None, decimals: int = 2) -> str:
    """Human readable byte count, e.g. ``1.5 GB``."""
    if num_bytes is None:
        return "-"
    if num_bytes == 0:
        return "0 Bytes"

    units = ["Bytes", "KB", "MB", "GB", "TB", "PB"]
    value = float(num_bytes)
    index = 0
    while abs(value) >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, decimals):g} {units[index]}"
