"""Centralized logging configuration for the snapshot service."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from transit_snapshot.models.config import LoggingConfig


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    log_file: str | None = None,
) -> None:
    """
    Configure structured logging for the service.

    Sets up structlog on top of the standard library so that both the
    sync engine and third-party libraries (SQLAlchemy, APScheduler) end up
    in the same stream:
    - JSON formatting for production (when json_logs=True)
    - Console formatting for development (when json_logs=False)
    - Optional rotating file output

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON logs. If False, use console format.
        log_file: Optional path to log file. If None, logs only to stdout.

    Example:
        >>> configure_logging(log_level="DEBUG", json_logs=False)
        >>> log = get_logger("transit_snapshot")
        >>> log.info("service_started", interval_seconds=3600)
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        stream=sys.stdout,
        force=True,
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        # 10MB per file, 5 backups
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        logging.root.addHandler(file_handler)

    # APScheduler logs every job run at INFO
    logging.getLogger("apscheduler").setLevel(max(numeric_level, logging.WARNING))

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.FUNC_NAME,
            ],
        ),
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer(ensure_ascii=False))
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_from_config(config: LoggingConfig) -> None:
    """Apply the ``logging`` section of the application config."""
    configure_logging(
        log_level=config.log_level,
        json_logs=config.json_logs,
        log_file=config.log_file,
    )


def get_logger(name: str | None = None, **context: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a logger, optionally bound to initial context.

    Components receive the result as their ``logger`` argument so that
    the context travels with the component rather than living in a global.

    Args:
        name: Optional logger name
        **context: Key/value pairs bound to every event

    Returns:
        Configured structlog logger

    Example:
        >>> log = get_logger(__name__, component="orchestrator")
        >>> log.info("cycle_started")
    """
    logger = structlog.stdlib.get_logger(name)
    return logger.bind(**context) if context else logger
