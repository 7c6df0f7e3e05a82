"""Logging setup for the inventory bot."""

import logging
import os
import sys
from datetime import datetime

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-12s | %(funcName)-20s | %(lineno)d | %(message)s"

COMPONENT_LOGGERS = ('system', 'ledger', 'sessions', 'router', 'flows', 'line', 'sheets', 'users')


class LocalTimeFormatter(logging.Formatter):
    """Formatter that stamps records in local system time."""

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.strftime('%Y-%m-%d %H:%M:%S,%f')[:-3]


def setup_logging(log_dir: str = ".", level: int = logging.DEBUG) -> logging.Logger:
    """
    Configure console and dated file logging for all components.

    Log Levels:
    - CRITICAL: startup/shutdown
    - INFO: flow transitions, ledger writes, outbound messages
    - DEBUG: cache hits/misses, request timings

    Args:
        log_dir: Directory for the dated log file
        level: Root log level

    Returns:
        logging.Logger: The 'system' logger
    """
    formatter = LocalTimeFormatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(
        os.path.join(log_dir, f"stockline_{datetime.now().strftime('%Y%m%d')}.log"),
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Quieter I/O loggers in production
    if os.environ.get('STOCKLINE_ENV') == 'production':
        for name in ('sheets', 'line', 'ledger'):
            logging.getLogger(name).setLevel(logging.INFO)

    logger = logging.getLogger('system')
    logger.info(f"Logging initialized for components: {', '.join(COMPONENT_LOGGERS)}")
    return logger
