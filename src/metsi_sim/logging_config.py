"""
Logging helpers.

Library modules obtain loggers with get_logger(__name__). Nothing is
printed unless an application calls configure_logging().
"""

import logging

PACKAGE_LOGGER = "metsi_sim"
DEFAULT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

logging.getLogger(PACKAGE_LOGGER).addHandler(logging.NullHandler())


def get_logger(name: str) -> logging.Logger:
    """Return a logger below the package namespace."""
    if not name.startswith(PACKAGE_LOGGER):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def configure_logging(
    level: int | str = logging.INFO, fmt: str = DEFAULT_FORMAT
) -> logging.Logger:
    """
    Attach a stream handler to the package logger.

    Calling this more than once replaces the previously installed handler.

    Args:
        level: Logging level name or number
        fmt: Format string for log records

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, "_metsi_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt))
    handler._metsi_handler = True
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def log_period_summary(
    logger: logging.Logger, period: int, frontier: int, children: int, failed: int
) -> None:
    """Log a one-line summary of a finished period expansion."""
    logger.info(
        "Period %d expanded: %d frontier nodes -> %d children (%d failed)",
        period,
        frontier,
        children,
        failed,
    )
