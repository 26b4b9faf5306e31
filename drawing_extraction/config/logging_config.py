"""
Structured logging configuration using structlog.

Events are rendered as JSON (default) or for the console, through the
standard logging module so third-party libraries share the same handlers.
Page-level context (page number, discipline) is carried in contextvars and
merged into every event logged while a page is being extracted.
"""

import logging
import logging.handlers
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from drawing_extraction.config.settings import LogFormat, get_settings


# Raw model output can run to many kilobytes; keep log lines readable.
MAX_LOGGED_STRING = 2000

QUIET_LOGGERS = ("httpx", "httpcore", "openai", "asyncio")


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add an ISO-8601 UTC timestamp."""
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def add_service_info(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Tag the event with service name, version and environment."""
    settings = get_settings()
    event_dict["service"] = settings.app_name
    event_dict["version"] = settings.app_version
    event_dict["environment"] = settings.app_env.value
    return event_dict


def add_caller_info(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Attach file, function and line of the stdlib record, when enabled."""
    if not get_settings().logging.include_caller:
        return event_dict

    record = event_dict.get("_record")
    if record is not None:
        event_dict["caller"] = {
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
    return event_dict


def truncate_long_values(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Shorten string values longer than ``MAX_LOGGED_STRING``."""
    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str) and len(value) > MAX_LOGGED_STRING:
            event_dict[key] = f"{value[:MAX_LOGGED_STRING]}... [{len(value)} chars]"
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_timestamp,
        truncate_long_values,
    ]


def get_json_processors() -> list[Processor]:
    """Processor chain for JSON output."""
    return [
        *_shared_processors(),
        add_service_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]


def get_console_processors() -> list[Processor]:
    """Processor chain for human-readable console output."""
    return [
        *_shared_processors(),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        ),
    ]


def _build_handlers(formatter: logging.Formatter, level: int) -> list[logging.Handler]:
    settings = get_settings().logging

    console = logging.StreamHandler(sys.stdout)
    handlers: list[logging.Handler] = [console]

    if settings.file_path is not None:
        settings.file_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                filename=str(settings.file_path),
                maxBytes=settings.file_max_size_mb * 1024 * 1024,
                backupCount=settings.file_backup_count,
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def configure_logging() -> None:
    """
    Configure structlog and the root logger from the logging settings.

    Replaces any handlers already on the root logger, so calling it twice
    does not duplicate output.
    """
    settings = get_settings()
    level = getattr(logging, settings.logging.level.value)

    if settings.logging.format == LogFormat.JSON:
        processors = get_json_processors()
        record_processors: list[Processor] = [add_caller_info]
    else:
        processors = get_console_processors()
        record_processors = []
    renderer = processors[-1]

    structlog.configure(
        processors=[*processors[:-1], structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Records from stdlib loggers (httpx, openai, tenacity) get the same rendering
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*_shared_processors(), structlog.stdlib.ExtraAdder()],
        processors=[
            *record_processors,
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in _build_handlers(formatter, level):
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def page_context(**context: Any) -> Iterator[None]:
    """
    Bind page-level context to every event logged inside the block.

    Example:
        with page_context(page_number=3, discipline="structural"):
            logger.info("tier_started")  # carries page_number and discipline
    """
    with structlog.contextvars.bound_contextvars(**context):
        yield


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Structlog logger for a module."""
    return structlog.get_logger(name)
