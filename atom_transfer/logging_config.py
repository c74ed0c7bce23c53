import sys
from typing import Optional

from loguru import logger

LOG_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} - {message}"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Replace loguru's default sink with the sender's console (and file) sinks."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT, colorize=True)
    if log_file:
        logger.add(log_file, level="DEBUG", format=FILE_FORMAT, rotation="10 MB", encoding="utf-8")
