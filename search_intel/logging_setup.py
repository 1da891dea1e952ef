"""Process-wide logging configuration using loguru or standard logging."""

import inspect
import logging
import sys

from loguru import logger

from config.settings import config


LOGURU_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level}</level> | <cyan>{name}</cyan> | {message}"
STDLIB_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class InterceptHandler(logging.Handler):
    """Forward standard logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller that originated the record
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(use_loguru: bool = None, level: str = None):
    """
    Configure logging for the whole process.

    Library modules log through ``logging.getLogger``; with loguru enabled
    those records are routed into a single colourised stderr sink.

    Returns:
        The loguru logger or the root ``search_intel`` stdlib logger
    """
    use_loguru = config.USE_LOGURU if use_loguru is None else use_loguru
    level = level or config.LOG_LEVEL

    if use_loguru:
        logger.remove()  # Remove default handler
        logger.add(
            sys.stderr,
            format=LOGURU_FORMAT,
            level=level,
            colorize=True
        )
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
        return logger

    std_logger = logging.getLogger("search_intel")
    std_logger.setLevel(getattr(logging, level))

    if not std_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(STDLIB_FORMAT))
        std_logger.addHandler(handler)

    return std_logger
