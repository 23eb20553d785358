"""
Structured logging with structlog.

JSON lines in production, console output elsewhere. Log calls that carry
``security_event=True`` (bad payment signatures, forged credentials, rejected
logins) are tagged ``channel="security"`` so a log shipper can route them.
Secrets that end up in event fields are masked before rendering.
"""

import logging
import sys

import structlog

from gatehouse.core.config import get_settings

_REDACTED_FIELDS = frozenset({"password", "signature", "access_token", "admission_token", "key_secret"})

_configured = False


def _tag_security_events(logger, method_name, event_dict):
    if event_dict.pop("security_event", False):
        event_dict["channel"] = "security"
    return event_dict


def _redact_secrets(logger, method_name, event_dict):
    for field in _REDACTED_FIELDS.intersection(event_dict):
        event_dict[field] = "***"
    return event_dict


def setup_logging() -> None:
    global _configured
    if _configured:
        return

    settings = get_settings()
    as_json = settings.ENVIRONMENT == "production"

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _tag_security_events,
        _redact_secrets,
    ]
    if as_json:
        pre_chain.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        # stdlib records from uvicorn and sqlalchemy pass through the same chain
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer() if as_json
            else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ],
    ))

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
