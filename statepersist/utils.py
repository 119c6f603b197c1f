from enum import Enum
import copy
import os
import logging


# we support python 3.10 so we define our own StrEnum (introduced in 3.11)
class StrEnum(str, Enum):
    """Backport of StrEnum for Python < 3.11"""

    def __str__(self):
        return self.value


ENV_LOG_LEVEL = "STATEPERSIST_LOG_LEVEL"
ENV_MODE = "STATEPERSIST_ENV"

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name when writing to a terminal.

    :param use_color: Whether to emit ANSI colour codes.
    :type use_color: bool
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__(
            "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        if not self.use_color or color is None:
            return super().format(record)
        # other handlers share the record, so colour a copy
        record = copy.copy(record)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def add_colored_handler(logger: logging.Logger) -> logging.Handler:
    """Attach a stderr handler, coloured only when stderr is a terminal."""
    handler = logging.StreamHandler()
    isatty = getattr(handler.stream, "isatty", None)
    handler.setFormatter(ColoredFormatter(use_color=bool(isatty and isatty())))
    logger.addHandler(handler)
    return handler


def setup_custom_logger(name: str) -> logging.Logger:
    """Setup the package logger.

    The level is read from ``STATEPERSIST_LOG_LEVEL`` (default ``INFO``).
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    add_colored_handler(logger)
    level = os.getenv(ENV_LOG_LEVEL, "INFO").strip().upper()
    logger.setLevel(LEVELS.get(level, logging.INFO))
    logger.propagate = False
    return logger


logger: logging.Logger = setup_custom_logger("statepersist")


def is_production() -> bool:
    """Whether ``STATEPERSIST_ENV`` selects production behaviour.

    In production, serialization failures are coerced instead of raised and
    per-key warnings are not logged.
    """
    return os.getenv(ENV_MODE, "development").strip().lower() == "production"
