"""
Logging for the render core

One ``vidwizard`` logger tree: a size-rotated log file for the queue history
and, unless disabled, a rich console handler for interactive runs.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Any, Dict

from rich.logging import RichHandler

ROOT_LOGGER = 'vidwizard'
DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# chatty client libraries, kept at WARNING unless asked otherwise
_NOISY_LOGGERS = ('aiohttp.access', 'aiohttp.client', 'asyncio')


def _file_handler(log_config: Dict[str, Any], default_dir: str) -> logging.Handler:
    log_file = Path(log_config.get('file', Path(default_dir) / 'vidwizard.log'))
    log_file.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=int(log_config.get('max_size_mb', 20)) * 1024 * 1024,
        backupCount=int(log_config.get('backup_count', 5)),
        encoding='utf-8',
    )
    handler.setFormatter(logging.Formatter(log_config.get('format', DEFAULT_FORMAT)))
    return handler


def setup_logging(config: 'Config') -> logging.Logger:
    """Configure the ``vidwizard`` logger from the ``logging`` section of the config.

    Recognised keys: ``level``, ``format``, ``file``, ``max_size_mb``,
    ``backup_count``, ``console`` (default true) and ``library_level`` for
    the aiohttp/asyncio loggers. Calling it again replaces the handlers.
    """
    log_config = config.logging or {}
    level = str(log_config.get('level', 'INFO')).upper()

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(_file_handler(log_config, config.paths.logs))

    if log_config.get('console', True):
        console_handler = RichHandler(rich_tracebacks=True, show_path=False)
        console_handler.setFormatter(logging.Formatter('%(name)s: %(message)s'))
        logger.addHandler(console_handler)

    library_level = str(log_config.get('library_level', 'WARNING')).upper()
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(getattr(logging, library_level))

    return logger


class LoggerMixin:
    """Gives a class its own ``vidwizard.<ClassName>`` logger"""

    @property
    def logger(self) -> logging.Logger:
        if not hasattr(self, '_logger'):
            self._logger = logging.getLogger(f'{ROOT_LOGGER}.{self.__class__.__name__}')
        return self._logger
