"""
Logging setup for the price stream process.
"""

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure root logging; optionally add a daily rotating file handler."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)

    if not log_file:
        return

    try:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)

        handler = TimedRotatingFileHandler(
            filename=log_file,
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

        root_logger = logging.getLogger()
        if not any(isinstance(h, TimedRotatingFileHandler) and h.baseFilename == handler.baseFilename
                   for h in root_logger.handlers):
            root_logger.addHandler(handler)
        else:
            handler.close()

        logger.info(f"Log rotation configured for {log_file} (daily, keep 7 days)")

    except OSError as e:
        logger.error(f"Failed to setup log rotation: {e}")
