"""structlog setup shared by the app, uvicorn and SQLAlchemy.

Every record (ours or a third-party stdlib logger's) goes through the same
processor chain: request correlation id, service name, redaction of
credential-looking keys, then JSON in production or the console renderer
in debug.
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

SERVICE_NAME = "billing-reconciler"

# Keys that may carry webhook secrets, provider API keys or signatures
REDACTED_KEYS = frozenset({"signature", "creem_signature", "secret", "webhook_secret", "api_key", "x_api_key"})
REDACTED = "[redacted]"


def add_correlation_id(logger, method, event_dict):
    """Attach the X-Request-ID of the current request, if any."""
    cid = correlation_id.get(None)
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def add_service(logger, method, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def redact_sensitive(logger, method, event_dict):
    """Mask values whose key names a credential."""
    for key in event_dict.keys() & REDACTED_KEYS:
        event_dict[key] = REDACTED
    return event_dict


def configure_structlog(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Install the processor chain and route stdlib logging through it.

    Must run before modules that call ``structlog.get_logger`` are imported
    (loggers are cached on first use).

    Args:
        log_level: root level, e.g. "INFO" or "DEBUG"
        json_logs: JSON lines when True, colored console output when False
    """
    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_id,
        add_service,
        redact_sensitive,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        # ConsoleRenderer formats tracebacks itself
        render_chain = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        render_chain = [structlog.dev.ConsoleRenderer()]

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "foreign_pre_chain": pre_chain,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    *render_chain,
                ],
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
        "loggers": {
            # Webhook deliveries are logged by the route; access lines add nothing
            "uvicorn.access": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    })

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
