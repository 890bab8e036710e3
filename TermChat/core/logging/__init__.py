"""
Central logging setup for the TermChat server.

Every module logs through ``logging.getLogger(__name__)``; this package
decides where those records go:

- Console output, coloured by level on terminals that support it
- Rotating log files (all records, plus an errors-only file)
- Optional JSON lines for log shippers
- Presets per environment (development, production, testing)

Usage:
    from TermChat.core.logging import auto_configure, get_logger

    auto_configure("development")
    logger = get_logger(__name__)
    logger.info("Server starting on %s:%d", host, port)
"""

import json
import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union


@dataclass
class LogConfig:
    """
    Settings applied by :func:`configure_logging`.

    Attributes:
        level: Minimum level name for the root logger
        log_dir: Directory that receives log files
        console_output: Emit records on stdout
        file_output: Emit records to rotating files under ``log_dir``
        json_output: Format file records as JSON lines
        max_bytes: Size at which a log file is rotated
        backup_count: Rotated files kept per log
        format_string: Overrides the default record format
        date_format: ``strftime`` format for timestamps
        component_levels: Per-logger level overrides, e.g. ``{"websockets": "WARNING"}``
    """
    level: str = "INFO"
    log_dir: str = "./logs"
    console_output: bool = True
    file_output: bool = True
    json_output: bool = False
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    format_string: Optional[str] = None
    date_format: str = "%Y-%m-%d %H:%M:%S"
    component_levels: Dict[str, str] = field(default_factory=dict)


class ColoredFormatter(logging.Formatter):
    """Prefixes the level name with an ANSI colour on console output."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str, datefmt: str = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and sys.platform != 'win32'

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors or record.levelname not in self.COLORS:
            return super().format(record)
        original = record.levelname
        record.levelname = f"{self.COLORS[original]}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class JsonFormatter(logging.Formatter):
    """Renders each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'line': record.lineno,
        }
        if record.exc_info:
            payload['exception'] = self.formatException(record.exc_info)
        extra = getattr(record, 'extra_data', None)
        if isinstance(extra, dict):
            payload.update(extra)
        return json.dumps(payload, default=str)


def get_default_format() -> str:
    """Format used on the console."""
    return "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_detailed_format() -> str:
    """Format used in log files."""
    return (
        "%(asctime)s - %(name)s - %(levelname)s - "
        "[%(filename)s:%(lineno)d - %(funcName)s] - %(message)s"
    )


def _level(value: Union[str, int]) -> int:
    if isinstance(value, int):
        return value
    return getattr(logging, value.upper())


class LoggingManager:
    """
    Owns the handlers installed on the root logger.

    Reconfiguring replaces the previously installed handlers, so calling
    :meth:`configure` twice does not duplicate output.
    """

    def __init__(self):
        self._config: Optional[LogConfig] = None
        self._handlers: List[logging.Handler] = []

    @property
    def config(self) -> Optional[LogConfig]:
        return self._config

    def configure(self, config: LogConfig) -> None:
        """
        Install handlers according to ``config``.

        Args:
            config: Logging configuration
        """
        self._config = config
        level = _level(config.level)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        for handler in self._handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self._handlers = []

        if config.console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            console_handler.setFormatter(ColoredFormatter(
                config.format_string or get_default_format(),
                config.date_format,
            ))
            self.add_handler(console_handler)

        if config.file_output:
            Path(config.log_dir).mkdir(parents=True, exist_ok=True)
            if config.json_output:
                file_formatter: logging.Formatter = JsonFormatter()
            else:
                file_formatter = logging.Formatter(
                    config.format_string or get_detailed_format(),
                    config.date_format,
                )
            for filename, handler_level in (("termchat.log", level),
                                            ("termchat_errors.log", logging.ERROR)):
                file_handler = logging.handlers.RotatingFileHandler(
                    os.path.join(config.log_dir, filename),
                    maxBytes=config.max_bytes,
                    backupCount=config.backup_count,
                    encoding='utf-8',
                )
                file_handler.setLevel(handler_level)
                file_handler.setFormatter(file_formatter)
                self.add_handler(file_handler)

        for component, component_level in config.component_levels.items():
            logging.getLogger(component).setLevel(_level(component_level))

        logging.getLogger(__name__).info("Logging configured with level %s", config.level)

    def add_handler(self, handler: logging.Handler) -> None:
        """Attach ``handler`` to the root logger and track it."""
        logging.getLogger().addHandler(handler)
        self._handlers.append(handler)

    def set_level(self, level: Union[str, int]) -> None:
        """Change the level of the root logger and every managed handler."""
        level = _level(level)
        logging.getLogger().setLevel(level)
        for handler in self._handlers:
            handler.setLevel(level)

    @property
    def handlers(self) -> List[logging.Handler]:
        return list(self._handlers)


_logging_manager = LoggingManager()


def get_logger(name: str) -> logging.Logger:
    """Return the logger called ``name``."""
    return logging.getLogger(name)


def configure_logging(config: LogConfig) -> None:
    """Configure logging through the process-wide manager."""
    _logging_manager.configure(config)


def get_logging_manager() -> LoggingManager:
    """Return the process-wide logging manager."""
    return _logging_manager


def create_development_config() -> LogConfig:
    return LogConfig(
        level="DEBUG",
        log_dir="./logs/dev",
        max_bytes=5 * 1024 * 1024,
        backup_count=3,
        component_levels={"websockets": "WARNING", "uvicorn": "INFO"},
    )


def create_production_config() -> LogConfig:
    return LogConfig(
        level="INFO",
        log_dir="./logs/prod",
        console_output=False,
        json_output=True,
        max_bytes=50 * 1024 * 1024,
        backup_count=10,
        component_levels={"websockets": "ERROR", "uvicorn": "WARNING"},
    )


def create_testing_config() -> LogConfig:
    return LogConfig(
        level="DEBUG",
        log_dir="./logs/test",
        file_output=False,
        format_string="%(levelname)s - %(name)s - %(message)s",
        component_levels={"websockets": "ERROR"},
    )


def auto_configure(env: Optional[str] = None) -> LogConfig:
    """
    Configure logging from an environment name.

    Args:
        env: ``development``, ``production`` or ``testing`` (short forms
             accepted). Falls back to ``TERMCHAT_ENV`` and then development.

    Returns:
        The configuration that was applied
    """
    if env is None:
        env = os.environ.get("TERMCHAT_ENV", "development")
    presets = {
        "development": create_development_config,
        "dev": create_development_config,
        "production": create_production_config,
        "prod": create_production_config,
        "testing": create_testing_config,
        "test": create_testing_config,
    }
    config = presets.get(env.lower(), create_development_config)()
    configure_logging(config)
    return config


__all__ = [
    'LogConfig',
    'LoggingManager',
    'ColoredFormatter',
    'JsonFormatter',
    'get_logger',
    'configure_logging',
    'get_logging_manager',
    'create_development_config',
    'create_production_config',
    'create_testing_config',
    'auto_configure',
    'get_default_format',
    'get_detailed_format',
]
