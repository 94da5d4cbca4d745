# ================================================================================
# LOGGING CONFIGURATION MODULE
# ================================================================================
# Centralized logging for the ClubHub backend: API requests, service rules and
# the scheduled event/recruitment jobs all log through get_logger().
#
# Features:
# - Configurable log levels via environment variables
# - Rotating file handler to prevent large log files
# - Dual output: console for development, files for production
# ================================================================================

import logging
from logging.handlers import RotatingFileHandler
import os

LOG_LEVEL = os.getenv("CLUBHUB_LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("CLUBHUB_LOG_FILE", "clubhub.log")
MAX_BYTES = int(os.getenv("CLUBHUB_LOG_MAX_BYTES", 5 * 1024 * 1024))  # 5MB
BACKUP_COUNT = int(os.getenv("CLUBHUB_LOG_BACKUP_COUNT", 3))
LOG_TO_FILE = os.getenv("CLUBHUB_LOG_TO_FILE", "true").strip().lower() == "true"

def get_logger(name: str = None) -> logging.Logger:
    """
    Get a configured logger instance for the specified module.

    The logger writes to the console and, unless CLUBHUB_LOG_TO_FILE is
    "false", to a rotating log file. Handlers are attached once per name.

    Args:
        name (str): Name of the logger, typically __name__ from calling module

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    level = getattr(logging, LOG_LEVEL, logging.INFO)
    logger.setLevel(level)

    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(logging.Formatter("%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"))
    logger.addHandler(ch)

    if LOG_TO_FILE:
        fh = RotatingFileHandler(LOG_FILE, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(filename)s:%(lineno)d | %(message)s"))
        logger.addHandler(fh)

    # Keep ClubHub output out of the root logger (werkzeug, apscheduler)
    logger.propagate = False
    return logger
