"""Module to create a logger instance."""

import logging
import sys
from logging import Formatter, Logger, StreamHandler

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - [%(threadName)s] %(message)s"


class StdoutFilter(logging.Filter):
    """Class to redirect logs to stdout."""

    def filter(self, record):
        """Redirect to stdout only logs with level lower or equal then WARNING."""
        return record.levelno <= logging.WARNING


class StderrFilter(logging.Filter):
    """Class to redirect logs to stderr."""

    def filter(self, record):
        """Redirect to stderr only logs with level greater or equal then ERROR."""
        return record.levelno >= logging.ERROR


def create_logger(name: str, level: str | int | None = None) -> Logger:
    """Create a logger with 2 stream handlers.

    Log to stdout messages with level lower or equal then WARNING otherwise log them
    to stderr. RPCs are served by a pool of threads, so the thread name is part of
    each record.

    Calling this function again with the same name only updates the level: the
    handlers are attached once.
    """
    logger = logging.getLogger(name)
    try:
        if level is not None:
            logger.setLevel(level)
        error_msg = None
    except ValueError:
        error_msg = f"Invalid log level: {level}"

    if not any(
        isinstance(f, (StdoutFilter, StderrFilter))
        for handler in logger.handlers
        for f in handler.filters
    ):
        formatter = Formatter(LOG_FORMAT)

        stdout_handler = StreamHandler(sys.stdout)
        stdout_handler.setFormatter(formatter)
        stdout_handler.addFilter(StdoutFilter())
        logger.addHandler(stdout_handler)

        stderr_handler = StreamHandler()
        stderr_handler.setFormatter(formatter)
        stderr_handler.addFilter(StderrFilter())
        logger.addHandler(stderr_handler)

    if error_msg is not None:
        logger.error(error_msg)

    return logger
