"""Centralized logging configuration with structlog.

Provides structured logging for jobs with proper context binding.
Supports both JSON (production) and console (development) output formats on
stdout, plus an optional per-job log file rotated daily. The log file always
receives JSON, whatever the console format is.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Final

import structlog
from structlog.types import EventDict, Processor

DEFAULT_LOG_RETENTION_DAYS: Final[int] = 14


def add_app_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add application-level context to all log entries.

    Args:
        logger: Logger instance
        method_name: Method name
        event_dict: Event dictionary

    Returns:
        Enhanced event dictionary
    """
    event_dict["app"] = "rpi_common"
    return event_dict


def _shared_processors() -> list[Processor]:
    """Processors applied to structlog and plain stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
    ]


def build_formatter(*, json_output: bool) -> structlog.stdlib.ProcessorFormatter:
    """Create a stdlib formatter rendering event dicts as JSON or console text."""
    processors: list[Processor] = [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta
    ]
    if json_output:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    return structlog.stdlib.ProcessorFormatter(
        processors=processors,
        foreign_pre_chain=_shared_processors(),
    )


def build_file_handler(
    log_file: Path, retention_days: int = DEFAULT_LOG_RETENTION_DAYS
) -> logging.Handler:
    """Create a JSON handler writing to ``log_file``, rotated at midnight.

    Args:
        log_file: Target file; parent directories are created
        retention_days: Number of rotated files kept on disk

    Returns:
        Configured file handler
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.TimedRotatingFileHandler(
        log_file,
        when="midnight",
        backupCount=max(retention_days, 1),
        encoding="utf-8",
    )
    handler.setFormatter(build_formatter(json_output=True))
    return handler


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    verbose: bool = False,
    log_file: Path | None = None,
    retention_days: int = DEFAULT_LOG_RETENTION_DAYS,
) -> None:
    """Configure structured logging with structlog.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, stdout gets JSON (production). If False, console format (dev)
        verbose: If True, include call-site information in every entry
        log_file: Optional file receiving the same records as JSON, rotated daily
        retention_days: Number of rotated log files kept when ``log_file`` is set

    Example:
        >>> setup_logging(log_level="INFO", json_logs=True)  # Production
        >>> setup_logging(log_level="DEBUG", log_file=Path("logs/Heartbeat.log"))
    """
    # Convert log level string to logging constant
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(build_formatter(json_output=json_logs))
    handlers: list[logging.Handler] = [console]
    if log_file is not None:
        handlers.append(build_file_handler(log_file, retention_days))

    # Configure standard library logging
    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)

    # Silence noisy libraries
    logging.getLogger("paho").setLevel(logging.WARNING)

    # Build processor chain; rendering happens per handler
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        *_shared_processors(),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if verbose:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                {
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.LINENO,
                }
            )
        )

    processors.append(structlog.stdlib.ProcessorFormatter.wrap_for_formatter)

    # Configure structlog
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Structured logger with context binding support

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("lock_acquired", internal_name="jobs.Heartbeat")
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: Any) -> None:
    """Bind context variables for all subsequent log entries in this thread.

    Args:
        **kwargs: Context key-value pairs

    Example:
        >>> bind_context(unique_identifier="9f3c...")
        >>> logger.info("publishing")  # Will include unique_identifier
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Unbind context variables.

    Args:
        *keys: Context keys to remove
    """
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()
