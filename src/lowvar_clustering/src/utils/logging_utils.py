import sys

from loguru import logger

from lowvar_clustering.src.config import config

LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
    " | <magenta>{extra}</magenta>"
)


def configure_logger(level: str | None = None) -> None:
    """Configure the Loguru stderr sink; defaults to the configured log level."""
    if level is None:
        level = config.app.log_level
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        colorize=True,
        format=LOG_FORMAT,
        backtrace=True,
        diagnose=True,
    )


def log_debug(message: str, **kwargs) -> None:
    logger.bind(**kwargs).debug(message)


def log_info(message: str, **kwargs) -> None:
    logger.bind(**kwargs).info(message)


def log_warning(message: str, **kwargs) -> None:
    logger.bind(**kwargs).warning(message)


def log_error(message: str, **kwargs) -> None:
    logger.bind(**kwargs).error(message)
