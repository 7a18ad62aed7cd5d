"""
Logging setup for crawl runs.
"""

import json
import logging
import logging.handlers
import platform
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Union

import psutil

from .config import LoggingConfig

# Attributes passed through ``extra=`` that end up in JSON output
CONTEXT_FIELDS = ('url', 'host', 'outcome', 'depth', 'status_code')

NOISY_LOGGERS = ('aiohttp.access', 'aiohttp.internal', 'urllib3.connectionpool')


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with crawl context fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.levelno >= logging.WARNING:
            entry['location'] = f"{record.module}.{record.funcName}:{record.lineno}"
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class NoiseFilter(logging.Filter):
    """Drop records from chatty third-party loggers."""

    def __init__(self, prefixes: Iterable[str] = NOISY_LOGGERS):
        super().__init__()
        self.prefixes = tuple(prefixes)

    def filter(self, record: logging.LogRecord) -> bool:
        return not record.name.startswith(self.prefixes)


def _rotating_handler(path: Path, max_mb: int, backups: int, level: int,
                      formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backups,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig, verbose: bool = False) -> logging.Logger:
    """
    Configure the root logger for a crawl run.

    Installs a console handler, a rotating file handler and an errors-only
    file next to it. ``config.json`` switches every handler to JSON lines.

    Args:
        config: Logging section of the crawler configuration
        verbose: Force DEBUG on the console

    Returns:
        Configured root logger
    """
    log_file = Path(config.file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if verbose else getattr(logging, config.level.upper())
    formatter = JSONFormatter() if config.json else logging.Formatter(config.format)
    noise_filter = NoiseFilter()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)

    handlers = [
        console,
        _rotating_handler(log_file, 50, 5, logging.DEBUG, formatter),
        _rotating_handler(log_file.parent / 'errors.log', 10, 3, logging.ERROR, formatter),
    ]

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    for handler in handlers:
        handler.addFilter(noise_filter)
        root.addHandler(handler)

    for name in ('aiohttp', 'asyncio', 'urllib3'):
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info(f"Logging to {log_file} at {logging.getLevelName(level)}")
    return root


def log_system_info(download_destination: Optional[Union[str, Path]] = None):
    """Log host resources relevant to a crawl run."""
    logger = logging.getLogger(__name__)

    memory = psutil.virtual_memory()
    logger.info(f"Platform: {platform.platform()} / Python {platform.python_version()}")
    logger.info(f"CPU cores: {psutil.cpu_count()}, memory: {memory.available / 1024**3:.1f} of "
                f"{memory.total / 1024**3:.1f} GB available")

    if download_destination is not None:
        # Walk up to an existing directory; the destination is created lazily
        target = Path(download_destination).resolve()
        while not target.exists() and target != target.parent:
            target = target.parent
        free = psutil.disk_usage(str(target)).free if target.exists() else 0
        logger.info(f"Free disk space for downloads: {free / 1024**3:.1f} GB")
        if free < 512 * 1024 * 1024:
            logger.warning(f"Less than 512MB free under {download_destination}")
