"""Structured logging for the payment service.

structlog renders JSON in production and a console view in debug. Stdlib
loggers (uvicorn, httpx, stripe, botocore) go through the same formatter, so
every line carries the service name and the request's ``correlation_id``.

Provider credentials, signature headers and raw webhook bodies must never reach
the log stream; ``redact_sensitive`` masks them wherever they appear as keys.
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

SERVICE_NAME = "payflow"
REDACTED = "[redacted]"

# Matched as substrings of lower-cased keys
_SENSITIVE_KEY_PARTS = (
    "secret",
    "token",
    "password",
    "authorization",
    "signature",
    "service_key",
    "service-key",
    "api_key",
)
_RAW_BODY_KEYS = frozenset({"raw_body", "body", "payload"})

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "stripe", "botocore", "boto3")


def _is_sensitive(key) -> bool:
    if not isinstance(key, str):
        return False
    lowered = key.lower()
    return lowered in _RAW_BODY_KEYS or any(part in lowered for part in _SENSITIVE_KEY_PARTS)


def _redact(value):
    if isinstance(value, dict):
        return {k: REDACTED if _is_sensitive(k) else _redact(v) for k, v in value.items()}
    return value


def redact_sensitive(logger, method, event_dict):
    """Mask credential, signature and raw-payload fields, including one level of nested dicts."""
    for key, value in list(event_dict.items()):
        if key == "event":
            continue
        if _is_sensitive(key):
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = _redact(value)
    return event_dict


def add_correlation_id(logger, method, event_dict):
    cid = correlation_id.get(None)
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def add_service_name(logger, method, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_structlog(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structlog and route stdlib logging through it.

    Call this BEFORE any other payflow imports; structlog caches the processor
    chain on first use.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_name,
        add_correlation_id,
        redact_sensitive,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "structured",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": {name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
    })

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
