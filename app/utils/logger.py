import logging
import sys


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_LEVEL = logging.INFO


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the specified name.
    Each logger gets its own handler and no propagation to avoid duplicates.
    """
    logger = logging.getLogger(name)

    # Only configure if not already configured
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

        logger.setLevel(LOG_LEVEL)
        logger.addHandler(handler)
        logger.propagate = False

    return logger


def configure_logging(level: str = "INFO"):
    """
    Configure application-wide logging for both the API and the worker.
    """
    global LOG_LEVEL
    LOG_LEVEL = logging.getLevelName(level.upper())
    if not isinstance(LOG_LEVEL, int):
        LOG_LEVEL = logging.INFO

    # Request logging is done by our own middleware
    logging.getLogger("uvicorn.access").disabled = True
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("fastapi").setLevel(logging.WARNING)

    # pika is chatty at INFO (every channel open/close)
    logging.getLogger("pika").setLevel(logging.WARNING)

    # loggers from get_logger() were created at import time with the old level
    for existing in list(logging.Logger.manager.loggerDict.values()):
        if isinstance(existing, logging.Logger) and not existing.propagate and existing.handlers:
            existing.setLevel(LOG_LEVEL)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel(LOG_LEVEL)
