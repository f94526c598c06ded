"""Structured logging for the automation engine.

Engine modules log through plain ``logging.getLogger(__name__)``; every
record is routed through structlog so it picks up the request and run
context bound below. Output is JSON unless running in development or
with ``LOG_FORMAT=text``.

Context layers:
    request  request_id (bound by RequestTrackingMiddleware)
    run      run_id, workflow_id, workflow_version (bound by the dispatcher)
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator

import structlog
from app.config import Settings, get_settings

# Libraries that are chatty at INFO
_QUIET_LOGGERS = ("uvicorn.access", "aiosqlite", "asyncio")


def _service_info(settings: Settings):
    service = {"service": settings.APP_NAME, "env": settings.ENVIRONMENT}

    def add_service_info(logger, method_name, event_dict):
        for key, value in service.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_info


def _shared_processors(settings: Settings) -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _service_info(settings),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _renderer(settings: Settings):
    if settings.is_development or settings.LOG_FORMAT == "text":
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging() -> None:
    """Configure structlog and attach it to the root stdlib logger."""
    settings = get_settings()
    shared = _shared_processors(settings)

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer(settings)],
            foreign_pre_chain=shared,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.SQLALCHEMY_ECHO else logging.WARNING
    )


def bind_request_context(**values) -> None:
    """Bind values (request id, actor id) to every log line of this task."""
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def run_log_context(run_id: str, workflow_id: str, workflow_version: int) -> Iterator[None]:
    """Tag every log line emitted while a run executes with its identity.

    Request-level values stay bound; the run fields are reset on exit so
    the next workflow matched by the same event starts clean.
    """
    with structlog.contextvars.bound_contextvars(
        run_id=run_id,
        workflow_id=workflow_id,
        workflow_version=workflow_version,
    ):
        yield
