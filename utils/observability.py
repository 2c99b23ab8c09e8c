"""Logging context and tracing helpers for outbound API requests."""

from __future__ import annotations

import contextlib
import contextvars
import logging
import uuid
from typing import Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode, Tracer

_logger = logging.getLogger(__name__)

_TRACER_NAME = "retrying.http"

_LOG_FORMAT = "%(asctime)s %(levelname)s [request_id=%(request_id)s] %(name)s %(message)s"

current_request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "current_request_id", default=None
)

_request_id_filter_attached = False


class RequestIdFilter(logging.Filter):
    """Ensure every log record carries the current request identifier."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = current_request_id_var.get() or "-"
        return True


_request_id_filter = RequestIdFilter()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure structured logging once per process."""

    global _request_id_filter_attached

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root_logger.addHandler(handler)
    else:
        for handler in root_logger.handlers:
            formatter = handler.formatter
            if formatter is None or "%(request_id)" not in getattr(formatter, "_fmt", ""):
                handler.setFormatter(logging.Formatter(_LOG_FORMAT))

    if not _request_id_filter_attached:
        root_logger.addFilter(_request_id_filter)
        for handler in root_logger.handlers:
            handler.addFilter(_request_id_filter)
        _request_id_filter_attached = True

    if level:
        root_logger.setLevel(level.upper())


def generate_request_id() -> str:
    """Generate a unique, log-friendly request identifier."""

    return f"req-{uuid.uuid4()}"


def get_current_request_id() -> Optional[str]:
    return current_request_id_var.get()


@contextlib.contextmanager
def request_context(request_id: Optional[str] = None) -> Iterator[str]:
    """Bind a request identifier to the current context for its duration.

    A nested call reuses the outer identifier unless one is passed explicitly,
    so every retry of one logical request logs under the same id.
    """

    resolved = request_id or current_request_id_var.get() or generate_request_id()
    token = current_request_id_var.set(resolved)
    try:
        yield resolved
    finally:
        current_request_id_var.reset(token)


def get_tracer(tracer_provider: Optional[trace.TracerProvider] = None) -> Tracer:
    return trace.get_tracer(_TRACER_NAME, tracer_provider=tracer_provider)


@contextlib.contextmanager
def observe_request(
    tracer: Tracer, method: str, url: str, attributes: Optional[Dict[str, object]] = None
) -> Iterator[Span]:
    """Open a span covering one logical request including all of its retries."""

    span_attributes: Dict[str, object] = {
        "http.request.method": method,
        "url.full": url,
    }
    request_id = current_request_id_var.get()
    if request_id:
        span_attributes["request.id"] = request_id
    if attributes:
        span_attributes.update(attributes)

    with tracer.start_as_current_span(
        "http.request",
        attributes=span_attributes,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise


__all__ = [
    "RequestIdFilter",
    "configure_logging",
    "current_request_id_var",
    "generate_request_id",
    "get_current_request_id",
    "get_tracer",
    "observe_request",
    "request_context",
]
