import logging
import sys
import os
from logging import Handler
from typing import Optional

from tqdm import tqdm

LOGGER_NAME = "paradox_translator"
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

# The OpenAI SDK logs every HTTP request through these at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "openai")


class TqdmLoggingHandler(Handler):
    """
    Logging handler that writes through tqdm.write so that log lines do not
    break the per-file chunk progress bars.
    """
    def __init__(self, level=logging.NOTSET):
        super().__init__(level)

    def emit(self, record):
        try:
            msg = self.format(record)
            tqdm.write(msg, file=sys.stderr)
            self.flush()
        except (KeyboardInterrupt, SystemExit):
            raise
        except Exception:
            self.handleError(record)


def _file_handler(log_file_path: str) -> Optional[logging.Handler]:
    if not log_file_path:
        return None
    log_dir = os.path.dirname(log_file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    return logging.FileHandler(log_file_path, encoding='utf-8')


def setup_logger(log_level_str: str, log_file_path: str, log_to_console: bool) -> logging.Logger:
    """
    Set up the package logger.

    Every module logs through ``logging.getLogger(__name__)``, so configuring the
    ``paradox_translator`` logger here covers the whole pipeline. Calling it
    again replaces the previous handlers.

    Args:
        log_level_str: The logging level as a string (e.g., 'INFO', 'DEBUG').
        log_file_path: The path to the log file. An empty path disables file logging.
        log_to_console: Whether to also log to stderr, above the progress bars.

    Returns:
        The configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level_str.upper(), logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False

    handlers = [_file_handler(log_file_path)]
    if log_to_console:
        handlers.append(TqdmLoggingHandler())

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        if handler is not None:
            handler.setFormatter(formatter)
            logger.addHandler(handler)

    if logger.level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return logger
