"""
structlog setup for the monitor.

Engine modules log through the standard ``logging`` module; those records
and structlog's own loggers (the HTTP middleware) are rendered by one
ProcessorFormatter, as JSON lines or as a colored console.
"""

import logging
import sys
from typing import Optional

import structlog

from . import __version__
from .config import MonitorSettings

SERVICE_NAME = "keypass-monitor"

# Third-party loggers that are noisy at INFO
QUIET_LOGGERS = ("uvicorn.access", "httpcore", "httpx")


def resolve_level(log_level: str) -> int:
    return getattr(logging, log_level.upper(), logging.INFO)


def add_service_info(logger, method_name, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("version", __version__)
    return event_dict


def use_json(log_format: str, level: int) -> bool:
    """``auto`` renders JSON unless running at DEBUG."""
    if log_format == "auto":
        return level != logging.DEBUG
    return log_format == "json"


def shared_processors(json_logs: bool) -> list:
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_logs:
        processors += [add_service_info, structlog.processors.format_exc_info]
    return processors


def setup_logging(
    settings: Optional[MonitorSettings] = None,
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        settings: Settings to read log_level and log_format from
        log_level: Override log level
        log_format: Override log format (auto, json or console)
    """
    level = resolve_level(log_level or (settings.log_level if settings else "info"))
    json_logs = use_json(log_format or (settings.log_format if settings else "auto"), level)
    processors = shared_processors(json_logs)

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    formatter = structlog.stdlib.ProcessorFormatter(
        # Records from stdlib loggers skip structlog's chain; run it for them here
        foreign_pre_chain=processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
