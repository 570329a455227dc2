"""
Structured logging on top of structlog.

Every module gets its logger through get_logger(__name__). Records are rendered
as JSON by default (LOG_FORMAT=console for local development) and pass through
a redaction step so credentials never reach the output.
"""
import logging
import sys
from typing import Any, Optional

import structlog

_REDACT_KEYS = frozenset(
    {
        "password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "authorization",
        "credential",
        "access_token",
        "webhook_secret",
    }
)

_REDACTED = "[REDACTED]"

_configured = False


def _redact_processor(logger: Any, method: str, event_dict: dict) -> dict:
    for key in list(event_dict.keys()):
        if key.lower() in _REDACT_KEYS:
            event_dict[key] = _REDACTED
    return event_dict


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    global _configured

    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _redact_processor,
    ]

    if fmt.lower() == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    # Reconfiguring must not stack handlers.
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    _configured = True


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Return a structured logger bound to the given name.

        log = get_logger(__name__)
        log.info("assignment.resolved", user_id="u_1", flag_key="exp")
    """
    if not _configured:
        from .settings import get_settings

        settings = get_settings()
        configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    return structlog.get_logger(name or __name__)


def bind_request_context(**kwargs: Any) -> None:
    """Attach fields (request_id, ...) to every log call for the current request."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
