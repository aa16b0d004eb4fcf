"""
Structured logging for the alert pipeline.

Both logger flavours end up in one stream: services and the API log through
structlog, while the detection, scheduling and delivery modules use plain
``logging.getLogger(__name__)``. Standard library records are rendered by
structlog's ``ProcessorFormatter``, so pipeline identifiers bound with
``pipeline_context`` (alert_id, release_id, flag, tier, ...) show up on every
line logged while an alert moves through dedup, routing and delivery.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from market_monitor.config.settings import get_settings

SERVICE_NAME = "market-monitor"

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "aiosmtplib")


def drop_unset_fields(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    """Remove keys whose value is None (e.g. an alert without a release)."""
    return {k: v for k, v in event_dict.items() if v is not None}


def add_service_name(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging() -> None:
    """
    Configure structured logging for the application.

    Production renders one JSON object per line tagged with the service
    name; development renders coloured console output.

    Usage:
        setup_logging()
        with pipeline_context(alert_id=alert.alert_id):
            logger.info("Alert routed", premium=3, deferred=12)
    """
    settings = get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        drop_unset_fields,
    ]

    renderer: Processor
    if settings.is_production:
        shared_processors.append(add_service_name)
        final_processors: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
        renderer = final_processors[-1]
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)
        final_processors = [renderer]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta]
        + final_processors,
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, settings.log_level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).debug(
        "Logging configured", renderer=type(renderer).__name__
    )


@contextmanager
def pipeline_context(**ids: Any) -> Iterator[None]:
    """
    Bind pipeline identifiers for the duration of a block.

    Nested blocks add to the outer context and restore it on exit, so a
    release tick can bind ``release_id`` and each alert inside it can add
    ``alert_id``. None values are not bound. Tasks created inside the block
    (e.g. concurrent channel sends) inherit the identifiers.
    """
    bound = {k: v for k, v in ids.items() if v is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def bind_context(**kwargs) -> None:
    """
    Bind context variables to all subsequent log messages.

    Used by the API middleware for the request id.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
