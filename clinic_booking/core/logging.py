"""
Structured logging for the booking service.

Every request gets an 8-character correlation id. Patient contact data and
cancellation tokens never reach the log output: the redaction processor
masks them wherever they appear in an event.
"""
import logging
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog
from fastapi import Request

# Request correlation context
request_id: ContextVar[str] = ContextVar('request_id', default="")
request_context: ContextVar[Dict[str, Any]] = ContextVar('request_context', default={})

# Event keys (and query parameters) that hold personal data or bearer secrets
SENSITIVE_KEYS = frozenset({"token", "cancel_token", "email", "phone", "patient_name"})
REDACTED = "***"


def mask_value(key: str, value: Any) -> Any:
    if value is None or key not in SENSITIVE_KEYS:
        return value
    text = str(value)
    # Keep a short prefix of tokens so support can match a complaint to a log line
    if key in ("token", "cancel_token") and len(text) > 12:
        return text[:4] + REDACTED
    return REDACTED


class TruncatingProcessor:
    """Keep message, error and notes fields short."""

    def __init__(self, max_length: int = 200):
        self.max_length = max_length

    def __call__(self, logger, method_name, event_dict):
        for key in ('message', 'error', 'notes'):
            if key in event_dict and event_dict[key] is not None:
                event_dict[key] = str(event_dict[key])[:self.max_length]
        return event_dict


class RedactionProcessor:
    """Mask patient contact data and cancellation tokens, including nested query params."""

    def __call__(self, logger, method_name, event_dict):
        for key, value in list(event_dict.items()):
            if isinstance(value, dict):
                event_dict[key] = {k: mask_value(k, v) for k, v in value.items()}
            else:
                event_dict[key] = mask_value(key, value)
        return event_dict


class CorrelationProcessor:
    """Add correlation ID and request context to all logs."""

    def __call__(self, logger, method_name, event_dict):
        correlation_id = request_id.get("")
        if correlation_id:
            event_dict['correlation_id'] = correlation_id

        for key, value in request_context.get({}).items():
            event_dict.setdefault(key, value)

        return event_dict


def setup_logging(debug: bool = False, max_log_length: int = 200, level: str = "INFO"):
    """Configure structlog once at startup; JSON in production, console output in development."""

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        CorrelationProcessor(),
        RedactionProcessor(),
        TruncatingProcessor(max_length=max_log_length),
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if debug:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
    )


def get_logger(name: str = __name__):
    return structlog.get_logger(name)


def bind_request(correlation_id: str, endpoint: Optional[str] = None, method: Optional[str] = None, **kwargs):
    """Attach the correlation id and endpoint to every log line of the current request."""
    request_id.set(correlation_id)
    context = {k: v for k, v in (("endpoint", endpoint), ("method", method)) if v}
    context.update(kwargs)
    request_context.set(context)


def clear_context():
    request_id.set("")
    request_context.set({})


class LoggingMiddleware:
    """Request logging with correlation ids.

    Only failures (status >= 400) and slow requests are logged unless
    ``log_requests`` is on. The correlation id is echoed back in the
    ``X-Correlation-ID`` header.
    """

    def __init__(self, log_requests: bool = False, slow_threshold: float = 2.0):
        self.log_requests = log_requests
        self.slow_threshold = slow_threshold
        self.logger = get_logger("middleware")

    async def __call__(self, request: Request, call_next):
        correlation_id = str(uuid.uuid4())[:8]
        bind_request(correlation_id, endpoint=request.url.path, method=request.method)
        request.state.correlation_id = correlation_id

        started = time.perf_counter()

        if self.log_requests:
            self.logger.info("request_start", query_params=dict(request.query_params))

        try:
            response = await call_next(request)
            duration = time.perf_counter() - started

            if self.log_requests or duration > self.slow_threshold or response.status_code >= 400:
                self.logger.info(
                    "request_complete",
                    status_code=response.status_code,
                    duration=round(duration, 3),
                    slow=duration > self.slow_threshold,
                )

            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except Exception as e:
            self.logger.error(
                "request_error",
                error=str(e),
                duration=round(time.perf_counter() - started, 3),
                error_type=type(e).__name__,
            )
            raise
        finally:
            clear_context()
