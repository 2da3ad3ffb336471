import logging

from pythonjsonlogger import jsonlogger

from .db import settings

LOGGER_NAME = "backend.quizhost"


def setup_logging():
    """
    Configures structured JSON logging for the package loggers.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(settings.LOG_LEVEL)

    # Prevent logs from being propagated to the root logger
    logger.propagate = False

    formatter = jsonlogger.JsonFormatter(
        '%(asctime)s %(name)s %(levelname)s %(message)s'
    )

    log_handler = logging.StreamHandler()
    log_handler.setFormatter(formatter)

    if not logger.handlers:
        logger.addHandler(log_handler)

    return logger
