"""
Structured logging configuration using structlog.

JSON lines in production, colored console output elsewhere. Every line carries
whatever the request middleware bound to the context (request id, idempotency
key); production lines also carry the service name and environment so the
log shipper can route them.
"""

import logging
import sys

import structlog

from boxoffice.core.config import Settings, get_settings

HANDLER_NAME = "boxoffice"

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite")


def _add_service_info(logger, method_name, event_dict):
    settings = get_settings()
    event_dict.setdefault("service", settings.APP_NAME)
    event_dict.setdefault("environment", settings.ENVIRONMENT)
    return event_dict


def _processors_for(settings: Settings) -> tuple[list, object]:
    """Pre-render processors shared by structlog and stdlib records, plus the renderer."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.ENVIRONMENT != "production":
        return processors, structlog.dev.ConsoleRenderer(colors=True)

    processors += [_add_service_info, structlog.processors.format_exc_info]
    return processors, structlog.processors.JSONRenderer()


def _install_handler(formatter: logging.Formatter, level: str) -> None:
    root = logging.getLogger()
    # Replace our own handler on repeated setup, leave anyone else's alone
    for handler in [h for h in root.handlers if h.get_name() == HANDLER_NAME]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def setup_logging() -> None:
    settings = get_settings()
    shared, renderer = _processors_for(settings)

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # stdlib records (uvicorn, alembic, sqlalchemy) go through the same chain
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )
    _install_handler(formatter, settings.LOG_LEVEL)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
