"""Structured logging configuration for statevault.

This module configures structlog with a shared processor chain. It supports
a development mode (human-readable console output) and a production mode
(JSON output), plus optional daily-rotated JSON log files.

Features:
- ISO 8601 timestamps
- Log level in all entries
- contextvars integration so slot and migration ids follow async tasks
- Large state payloads are summarized instead of dumped
- Mode selection via STATEVAULT_LOG_MODE or config

Standard log keys:
- key: Storage key or save slot
- version: Save-format version
- migration_id: Identifier of a migration run
- snapshot_id: Identifier of an in-memory snapshot
- source: Origin tag of a state update

Event naming convention:
- Use dot.notation (e.g., "storage.record.saved", "migration.step.applied")
- Format: domain.entity.verb_past_tense

Usage:
    from statevault.observability import configure_logging, get_logger

    configure_logging(LoggingConfig(mode=LogMode.DEV))
    log = get_logger(__name__)
    log.info("storage.record.saved", key="slot1", size=2048)
"""

from __future__ import annotations

from enum import Enum
import logging
from logging.handlers import TimedRotatingFileHandler
import os
from pathlib import Path
import sys
from typing import Any

from pydantic import BaseModel, Field
import structlog

MAX_LOGGED_ITEMS = 20
"""Mappings or lists larger than this are summarized in log entries."""


class LogMode(str, Enum):
    """Logging output mode."""

    DEV = "dev"
    PROD = "prod"


class LoggingConfig(BaseModel):
    """Configuration for structured logging.

    Attributes:
        mode: Output mode (dev for human-readable, prod for JSON).
        log_level: Minimum log level to output.
        log_dir: Directory for log files. Defaults to ~/.statevault/logs/.
        max_log_days: Number of days to retain log files.
        enable_file_logging: Whether to write logs to files.
    """

    mode: LogMode = Field(default=LogMode.DEV)
    log_level: str = Field(default="INFO")
    log_dir: Path = Field(
        default_factory=lambda: Path.home() / ".statevault" / "logs"
    )
    max_log_days: int = Field(default=7, ge=1, le=365)
    enable_file_logging: bool = Field(default=False)

    model_config = {"frozen": True}


_configured: bool = False
_current_config: LoggingConfig | None = None
_console_logging_enabled: bool = True


def _get_mode_from_env() -> LogMode:
    """Return the mode named by STATEVAULT_LOG_MODE, defaulting to DEV."""
    env_mode = os.environ.get("STATEVAULT_LOG_MODE", "dev").lower()
    if env_mode == "prod":
        return LogMode.PROD
    return LogMode.DEV


def _get_log_level(level_str: str) -> int:
    """Convert a level name such as "INFO" to its logging constant."""
    level = logging.getLevelName(level_str.upper())
    if isinstance(level, int):
        return level
    return logging.INFO


def _setup_file_handler(config: LoggingConfig) -> TimedRotatingFileHandler | None:
    """Create the midnight-rotating file handler, if file logging is enabled.

    Args:
        config: Logging configuration.

    Returns:
        Configured handler or None if file logging is disabled.
    """
    if not config.enable_file_logging:
        return None

    config.log_dir.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(config.log_dir / "statevault.log"),
        when="midnight",
        interval=1,
        backupCount=config.max_log_days,
        encoding="utf-8",
        utc=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(_get_log_level(config.log_level))
    return handler


def _summarize_payloads(
    _logger: Any,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor that replaces large trees with a size summary.

    State trees can be arbitrarily large; log entries keep only their shape.

    Args:
        _logger: The logger instance (unused).
        _method_name: The log method name (unused).
        event_dict: The event dictionary to process.

    Returns:
        Event dictionary with oversized values summarized.
    """
    for key, value in list(event_dict.items()):
        if key in ("event", "level", "timestamp", "filename", "lineno"):
            continue
        if isinstance(value, dict) and len(value) > MAX_LOGGED_ITEMS:
            event_dict[key] = f"<dict with {len(value)} keys>"
        elif isinstance(value, list) and len(value) > MAX_LOGGED_ITEMS:
            event_dict[key] = f"<list with {len(value)} items>"
    return event_dict


def _get_processors(mode: LogMode) -> list[Any]:
    """Build the processor chain ending in the renderer for ``mode``."""
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _summarize_payloads,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
        structlog.processors.format_exc_info,
    ]
    if mode == LogMode.DEV:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer())
    return processors


def set_console_logging(enabled: bool) -> None:
    """Enable or disable console log output.

    The CLI disables it so log lines do not interleave with rich tables.
    """
    global _console_logging_enabled
    _console_logging_enabled = enabled


def is_console_logging_enabled() -> bool:
    return _console_logging_enabled


class _ConsoleAndFileLogger:
    """Print logger writing to stderr and, optionally, a file handler."""

    def __init__(self, file_handler: TimedRotatingFileHandler | None = None) -> None:
        self._file_handler = file_handler

    def _log(self, message: str, level: int = logging.INFO) -> None:
        if _console_logging_enabled:
            print(message, file=sys.stderr)

        if self._file_handler:
            record = logging.LogRecord(
                name="statevault",
                level=level,
                pathname="",
                lineno=0,
                msg=message,
                args=(),
                exc_info=None,
            )
            self._file_handler.emit(record)

    def msg(self, message: str) -> None:
        self._log(message, logging.INFO)

    def debug(self, message: str) -> None:
        self._log(message, logging.DEBUG)

    def info(self, message: str) -> None:
        self._log(message, logging.INFO)

    def warning(self, message: str) -> None:
        self._log(message, logging.WARNING)

    def error(self, message: str) -> None:
        self._log(message, logging.ERROR)

    def critical(self, message: str) -> None:
        self._log(message, logging.CRITICAL)

    def exception(self, message: str) -> None:
        self._log(message, logging.ERROR)

    warn = warning
    fatal = critical
    __call__ = msg


class _ConsoleAndFileLoggerFactory:
    """Factory handing structlog a logger bound to the shared file handler."""

    def __init__(self, file_handler: TimedRotatingFileHandler | None = None) -> None:
        self._file_handler = file_handler

    def __call__(self, *_args: Any) -> _ConsoleAndFileLogger:
        return _ConsoleAndFileLogger(self._file_handler)


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Configure structlog for the application.

    Call once at startup; calling again replaces the previous configuration.

    Args:
        config: Logging configuration. If None, uses defaults with the mode
            taken from the STATEVAULT_LOG_MODE environment variable.

    Example:
        configure_logging(LoggingConfig(mode=LogMode.PROD, log_level="DEBUG"))
    """
    global _configured, _current_config

    if config is None:
        config = LoggingConfig(mode=_get_mode_from_env())

    _current_config = config
    log_level = _get_log_level(config.log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    file_handler = _setup_file_handler(config)
    if file_handler:
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=_get_processors(config.mode),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=_ConsoleAndFileLoggerFactory(file_handler),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a bound logger, configuring defaults on first use.

    Args:
        name: Optional logger name, usually ``__name__``.

    Returns:
        A bound structlog logger.
    """
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables included in every subsequent log entry.

    Example:
        bind_context(key="slot1", migration_id="migration_1712_ab12cd34")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove context variables from the logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


def get_current_config() -> LoggingConfig | None:
    return _current_config


def is_configured() -> bool:
    return _configured


def reset_logging() -> None:
    """Reset logging configuration state.

    Used by tests; the next get_logger() call reconfigures with defaults.
    """
    global _configured, _current_config
    _configured = False
    _current_config = None
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
