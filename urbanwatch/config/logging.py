"""
Structured logging for the API and the notification worker.

Both processes log through structlog: JSON lines in production, a
colored console renderer elsewhere. Every event carries the emitting
process name, and citizen contact details and credentials are scrubbed
before rendering.
"""

import logging
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

# Values under these keys are dropped whatever they contain
SECRET_KEYS = frozenset({
    "password",
    "password_hash",
    "token",
    "access_token",
    "api_key",
    "authorization",
})

PII_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Philippine mobile numbers (09XXXXXXXXX / +639XXXXXXXXX)
    (re.compile(r"(?:\+?63|0)9\d{9}\b"), "[PHONE_REDACTED]"),
    (re.compile(r"\+\d{10,15}\b"), "[PHONE_REDACTED]"),
    (re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), "[EMAIL_REDACTED]"),
]

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "aiohttp.access", "anthropic")


def _scrub(key: str | None, value: Any) -> Any:
    if key is not None and key.lower() in SECRET_KEYS:
        return "[REDACTED]"
    if isinstance(value, str):
        for pattern, replacement in PII_PATTERNS:
            value = pattern.sub(replacement, value)
        return value
    if isinstance(value, dict):
        return {k: _scrub(k, v) for k, v in value.items()}
    if isinstance(value, list):
        return [_scrub(None, item) for item in value]
    return value


def filter_pii(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Structlog processor that removes phone numbers, emails and secrets."""
    return {key: _scrub(key, value) for key, value in event_dict.items()}


def service_context(service: str) -> Processor:
    """Processor that stamps every event with the emitting process."""

    def _add_service(
        logger: logging.Logger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.setdefault("service", service)
        return event_dict

    return _add_service


def configure_logging(
    *,
    service: str = "urbanwatch-api",
    json_format: bool = True,
    log_level: str = "INFO",
) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        service: Name recorded on every event (urbanwatch-api,
            urbanwatch-worker).
        json_format: JSON lines when True, colored console otherwise.
        log_level: Minimum level for UrbanWatch loggers.
    """
    level = logging.getLevelName(log_level.upper())

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        service_context(service),
        filter_pii,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None, **bindings: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger, optionally pre-bound with context.

    Example:
        logger = get_logger(__name__, component="transitions")
        logger.info("Concern status updated", concern_id="...")
    """
    logger = structlog.get_logger(name)
    bindings = {k: v for k, v in bindings.items() if v is not None}
    return logger.bind(**bindings) if bindings else logger


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """
    Bind context variables for the duration of a block.

    Example:
        with log_context(entry_id="1700000000000-0"):
            logger.info("Event dispatched")
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
