"""
Logging utilities.

Every record carries a ``model`` field so that inference, training and
snapshot messages can be traced back to the model id that produced them.
"""

from loguru import logger
import sys
from typing import Optional


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[model]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[model]} | {name}:{function}:{line} - {message}"


def setup_logger(
    log_file: Optional[str] = None,
    level: str = "INFO",
    rotation: str = "1 day",
    retention: str = "30 days"
):
    """
    Route loguru output to stderr and, optionally, a rotating file.
    
    Args:
        log_file: Path to log file
        level: Console logging level
        rotation: Log rotation period
        retention: Log retention period
    """
    logger.remove()
    logger.configure(extra={"model": "-"})
    
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)
    
    if log_file:
        logger.add(
            log_file,
            rotation=rotation,
            retention=retention,
            level="DEBUG",
            format=FILE_FORMAT
        )


def model_logger(model_id: str):
    """Logger bound to a model id."""
    return logger.bind(model=model_id)
