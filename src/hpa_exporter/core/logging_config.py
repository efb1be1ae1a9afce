#!/usr/bin/env python3
"""
Centralized logging configuration for the exporter

Operational logs go to stdout (and optionally a file) through the root logger.
Condition records use their own logger, which writes the bare JSON line to
stdout so the output can be consumed by a log shipper as-is.
"""

import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

CONDITION_LOGGER_NAME = "hpa_exporter.conditions"

DEFAULT_CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s"

# Client libraries that log every request at INFO/DEBUG
NOISY_LOGGERS = ("urllib3", "kubernetes", "botocore", "boto3", "uvicorn.access")


class ColoredFormatter(logging.Formatter):
    """Colors the level name by severity"""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname)
        if color is None:
            return super().format(record)
        # The record is shared with the file handler, which must not see escape codes
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


def _configure_condition_logger() -> None:
    condition_logger = logging.getLogger(CONDITION_LOGGER_NAME)
    for handler in condition_logger.handlers[:]:
        condition_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    condition_logger.addHandler(handler)
    condition_logger.setLevel(logging.INFO)
    condition_logger.propagate = False


def quiet_loggers(names: Iterable[str] = NOISY_LOGGERS, level: int = logging.WARNING) -> None:
    for name in names:
        logging.getLogger(name).setLevel(level)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_colors: bool = True,
    console_format: str = DEFAULT_CONSOLE_FORMAT
) -> None:
    """
    Configure the root logger and the condition record logger

    Safe to call more than once; existing root handlers are replaced.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL; unknown names fall back to INFO
        log_file: Also write operational logs to this file, creating its directory
        enable_colors: Color the level name on the console
        console_format: Format string for the console handler
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(
        ColoredFormatter(console_format) if enable_colors else logging.Formatter(console_format)
    )
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root_logger.addHandler(file_handler)

    _configure_condition_logger()
    quiet_loggers()

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {logging.getLevelName(numeric_level)} level")
    if log_file:
        logger.info(f"Log file: {log_file}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
