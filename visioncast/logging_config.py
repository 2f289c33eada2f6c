"""
Structured logging configuration for the creations service.

Configures structlog to emit one JSON object per line on **stdout** with
the fields every entry carries: timestamp (ISO 8601 UTC), level, event,
service_name and, while a request is being handled, correlation_id.

Background generations are started from inside a request handler, so the
asyncio task that runs them copies the request's context variables and
their log entries keep the submitting request's correlation_id.

Both structlog-native loggers and standard library loggers (used by
Uvicorn and httpx) are routed through the same processing pipeline and
produce identical JSON output.
"""

import logging
import sys

import structlog

SERVICE_NAME = "visioncast-api"


def _add_service_name(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Inject the service name into every log entry."""
    event_dict["service_name"] = SERVICE_NAME
    return event_dict


def _uppercase_level(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def _resolve_log_level(log_level: str) -> int:
    """Translate a level name into a ``logging`` constant, defaulting to INFO."""
    resolved_level = logging.getLevelName(log_level.strip().upper())
    if isinstance(resolved_level, int):
        return resolved_level
    return logging.INFO


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured JSON logging to stdout.

    Should be called once during application startup, before any log
    messages are emitted.  Calling it again replaces the root handler
    rather than stacking a second one, so repeated application factories
    in the test suite do not duplicate output.

    Args:
        log_level: Minimum level name.  Unknown names fall back to INFO.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service_name,
        structlog.stdlib.add_log_level,
        _uppercase_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    json_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(json_formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(stdout_handler)
    root_logger.setLevel(_resolve_log_level(log_level))

    # httpx logs every outbound request at INFO; provider probes are
    # already covered by the cascade's own events.
    logging.getLogger("httpx").setLevel(logging.WARNING)
