"""
Structured logging for the repository authorization service.

Every event is a JSON object carrying the service name, the current
OpenTelemetry trace/span ids and whatever request context has been bound
through ``set_request_id``/``set_user_context``. Request context lives in
``structlog.contextvars`` so concurrent requests never see each other's ids.
"""

import logging
import sys
import time
import uuid
from typing import Any, Dict, List, Optional

import structlog
from opentelemetry import trace

EventDict = Dict[str, Any]


def _service_stamper(service_name: str):
    def stamp_service(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict
    return stamp_service


def add_trace_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Attach the ids of the active span, if one is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        context = span.get_span_context()
        event_dict["trace_id"] = f"{context.trace_id:032x}"
        event_dict["span_id"] = f"{context.span_id:016x}"
    return event_dict


def _processors(service_name: str, json_logs: bool) -> List[Any]:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        _service_stamper(service_name),
        add_trace_context,
    ]
    processors.append(structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer())
    return processors


def configure_logging(service_name: str, log_level: str = "info", json_logs: bool = True) -> None:
    """Route structlog through stdlib logging at ``log_level``."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    structlog.configure(
        processors=_processors(service_name, json_logs),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id (generated when absent) to the current context."""
    request_id = request_id or uuid.uuid4().hex
    structlog.contextvars.bind_contextvars(request_id=request_id)
    return request_id


def set_user_context(user_id: Optional[str] = None) -> None:
    if user_id:
        structlog.contextvars.bind_contextvars(user_id=user_id)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger named ``name``; events are key/value pairs."""
    return structlog.get_logger(name)


def elapsed_ms(start_time: float) -> float:
    """Milliseconds elapsed since ``start_time`` (a ``time.time()`` value)."""
    return round((time.time() - start_time) * 1000, 3)
