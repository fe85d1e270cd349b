"""Logging configuration for SubStitch."""

import logging
import sys
from logging.handlers import RotatingFileHandler
import os
from typing import Optional, Sequence

from tqdm import tqdm

from .utils import ensure_dir_exists

DEFAULT_LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(threadName)s %(name)s:%(lineno)d] - %(message)s'
DEFAULT_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Chatty third-party loggers: HTTP clients of the OpenAI corrector and Whisper's numba JIT
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "urllib3", "numba")


class TqdmLoggingHandler(logging.StreamHandler):
    """Console handler that prints through tqdm so log lines do not break chunk progress bars."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record), file=self.stream)
            self.flush()
        except Exception:
            self.handleError(record)


def setup_logging(
    log_level: int = logging.INFO,
    log_dir: str = "logs",
    log_file: str = "substitch.log",
    log_format: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    quiet_loggers: Sequence[str] = QUIET_LOGGERS,
) -> None:
    """
    Configures logging for the application.

    Console output goes to stdout through tqdm; the file log rotates. Calling
    it again replaces the handlers of the previous call, so the CLI can start
    with a bootstrap log and switch to the configured one once config is read.

    Args:
        log_level: The minimum logging level (e.g., logging.INFO, logging.DEBUG).
        log_dir: The directory to store log files.
        log_file: The name of the log file.
        log_format: The format string for log messages.
        date_format: The format string for timestamps in logs.
        max_bytes: Maximum size of a log file before rotation.
        backup_count: Number of backup log files to keep.
        quiet_loggers: Loggers capped at WARNING.
    """
    logger = logging.getLogger()
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(log_level)
    formatter = logging.Formatter(log_format, datefmt=date_format)

    console_handler = TqdmLoggingHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    logger.addHandler(console_handler)

    try:
        ensure_dir_exists(log_dir)
        log_path = os.path.join(log_dir, log_file)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.info(f"Logging initialized. Log file: {log_path}")
    except Exception as e:
        # Console logging still works
        logger.error(f"Failed to set up file logging handler at {log_dir}/{log_file}: {e}", exc_info=True)

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging_from_config(config: dict, log_level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """
    Configures logging from the 'log_*' keys of a loaded configuration.

    Args:
        config: Configuration dictionary (see config_loader.DEFAULT_CONFIG).
        log_level: The minimum logging level.
        log_file: Overrides config['log_file'], e.g. for batch runs.
    """
    setup_logging(
        log_level=log_level,
        log_dir=config['log_dir'],
        log_file=log_file or config['log_file'],
        max_bytes=int(config.get('log_max_bytes', 10 * 1024 * 1024)),
        backup_count=int(config.get('log_backup_count', 5)),
    )
