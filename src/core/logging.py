"""
Logging Configuration for RakshaSetu

Sets up the rotating log file and console output for the SOS runner, and
the structured JSON events emitted while an SOS is being dispatched.
"""

import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional
import structlog


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# aiohttp logs every SMS gateway request at INFO
DEFAULT_QUIET_LOGGERS = ['asyncio', 'aiohttp.access', 'aiohttp.client']


def _configure_structlog():
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class RakshaSetuLogger:
    """
    Root logging setup driven by the ``logging`` config section:
    ``level``, ``file``, ``max_size``, ``backup_count``, ``console``,
    ``console_level``, ``services`` (per-component levels) and
    ``quiet_loggers`` (third-party loggers held at WARNING).
    """

    def __init__(self, config: Dict):
        self.log_config = config.get('logging', {})
        self.quiet_loggers: List[str] = list(self.log_config.get('quiet_loggers', DEFAULT_QUIET_LOGGERS))
        self._setup_logging()

    def _setup_logging(self):
        log_level = self._level(self.log_config.get('level', 'INFO'))
        log_file = self.log_config.get('file', 'logs/rakshasetu.log')

        _configure_structlog()

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.handlers.clear()

        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=self._parse_size(self.log_config.get('max_size', '10MB')),
                backupCount=self.log_config.get('backup_count', 5),
                encoding='utf-8'
            )
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
            file_handler.setLevel(log_level)
            root_logger.addHandler(file_handler)

        if self.log_config.get('console', True):
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S'))
            console_handler.setLevel(self._level(self.log_config.get('console_level', 'INFO')))
            root_logger.addHandler(console_handler)

        # e.g. services: {sos: DEBUG, live_location: WARNING}
        for service, level in self.log_config.get('services', {}).items():
            logging.getLogger(f'rakshasetu.{service}').setLevel(self._level(level))

        for logger_name in self.quiet_loggers:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    def _level(self, name: str) -> int:
        return getattr(logging, str(name).upper(), logging.INFO)

    def _parse_size(self, size_str: str) -> int:
        """Parse size string like '10MB' to bytes"""
        size_str = str(size_str).upper()
        for suffix, factor in (('KB', 1024), ('MB', 1024 ** 2), ('GB', 1024 ** 3)):
            if size_str.endswith(suffix):
                return int(size_str[:-2]) * factor
        return int(size_str)


# Global logger instance
_logger_instance: Optional[RakshaSetuLogger] = None


def initialize_logging(config: Dict) -> RakshaSetuLogger:
    """Initialize the global logging system"""
    global _logger_instance
    _logger_instance = RakshaSetuLogger(config)
    return _logger_instance


def get_logger(name: str) -> logging.Logger:
    """Get a rakshasetu.<name> logger"""
    if name.startswith('rakshasetu'):
        return logging.getLogger(name)
    return logging.getLogger(f'rakshasetu.{name}')


def get_structured_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance"""
    if _logger_instance is None and not structlog.is_configured():
        _configure_structlog()
    return structlog.get_logger(f'rakshasetu.{name}')


class LogContext:
    """
    Structured log scope for one operation, such as a single SOS dispatch.

    Emits ``<operation>_started`` on entry and ``<operation>_finished`` (or
    ``<operation>_failed``) on exit with the elapsed time. Fields added
    with ``bind`` while the operation runs, like the live session id or
    the channel summary, are carried on every later event including the
    closing one.
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger, operation: str, **context):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.bound_logger = None
        self._started = 0.0

    def __enter__(self) -> 'LogContext':
        self.bound_logger = self.logger.bind(**self.context)
        self._started = time.monotonic()
        self.bound_logger.info(f"{self.operation}_started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed_ms = round((time.monotonic() - self._started) * 1000)
        if exc_type is None:
            self.bound_logger.info(f"{self.operation}_finished", elapsed_ms=elapsed_ms)
        else:
            self.bound_logger.error(f"{self.operation}_failed", elapsed_ms=elapsed_ms, error=str(exc_val))
        return False

    def bind(self, **fields):
        self.bound_logger = self.bound_logger.bind(**fields)

    def info(self, event: str, **fields):
        self.bound_logger.info(event, **fields)

    def warning(self, event: str, **fields):
        self.bound_logger.warning(event, **fields)

    def error(self, event: str, **fields):
        self.bound_logger.error(event, **fields)
