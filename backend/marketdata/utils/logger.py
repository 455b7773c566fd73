"""
MarketData Access Layer - Logger Configuration
Centralized logging with loguru
"""
import sys
from pathlib import Path
from loguru import logger


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(
    level: str = "INFO",
    log_dir: str | None = "logs",
) -> None:
    """
    Configure loguru sinks for the process.

    Args:
        level: Minimum level for the console sink
        log_dir: Directory for rotating file logs, or None to log to stdout only
    """
    # Remove default handler
    logger.remove()

    logger.add(
        sys.stdout,
        colorize=True,
        format=CONSOLE_FORMAT,
        level=level,
    )

    if not log_dir:
        return

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # All logs
    logger.add(
        log_path / "marketdata.log",
        rotation="10 MB",
        retention="30 days",
        compression="gz",
        format=FILE_FORMAT,
        level="DEBUG",
    )

    # Errors only
    logger.add(
        log_path / "error.log",
        rotation="10 MB",
        retention="30 days",
        compression="gz",
        format=FILE_FORMAT,
        level="ERROR",
    )


def get_logger(name: str = __name__):
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logger.bind(name=name)


__all__ = ["logger", "get_logger", "setup_logging"]
