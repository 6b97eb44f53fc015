"""Logging configuration and utilities."""

import functools
import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import Optional

import structlog
import colorlog
from structlog.typing import Processor

LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}

# Libraries that log every file event or request at INFO
NOISY_LOGGERS = ("watchfiles", "aiohttp.access")

MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """Configure structlog and the stdlib handlers behind it.

    Events go to stderr, colored per level. With a log file configured
    (``LOG_FILE_PATH``), the same events are also appended to a rotating file,
    which is handy for long watch sessions.
    """
    from ..config.settings import get_logging_settings

    settings = get_logging_settings()

    level = getattr(logging, (log_level or settings.level).upper())
    renderer_format = log_format or settings.format
    file_path = log_file or settings.file_path

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if renderer_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    console_handler = colorlog.StreamHandler(sys.stderr)
    console_handler.setFormatter(
        colorlog.ColoredFormatter("%(log_color)s%(message)s", reset=True, log_colors=LOG_COLORS)
    )
    _attach(console_handler, level)

    if file_path:
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            file_path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        _attach(file_handler, level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def _attach(handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    logging.getLogger().addHandler(handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_async_execution_time(func):
    """Log how long a top-level sync operation took; failures are logged and re-raised."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        logger = get_logger(func.__qualname__)
        start_time = time.perf_counter()

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.error(
                "Operation failed",
                operation=func.__qualname__,
                elapsed=f"{time.perf_counter() - start_time:.2f}s",
                error=str(e)
            )
            raise

        logger.debug(
            "Operation finished",
            operation=func.__qualname__,
            elapsed=f"{time.perf_counter() - start_time:.2f}s"
        )
        return result

    return wrapper
