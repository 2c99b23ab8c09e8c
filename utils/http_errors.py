"""Error taxonomy for retried HTTP requests and user-facing classification."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class RequestError(Exception):
    """Base error for a request that ended without a usable response."""

    retryable: bool = False

    def __init__(
        self, message: str, *, cause: Optional[BaseException] = None, url: Optional[str] = None
    ) -> None:
        self.url = url
        self.cause = cause
        super().__init__(message)


class NetworkError(RequestError):
    """The transport could not complete the exchange."""

    retryable = True


class StatusError(RequestError):
    def __init__(
        self, status_code: int, status_text: str = "", *, url: Optional[str] = None
    ) -> None:
        self.status_code = int(status_code)
        self.status_text = status_text or ""
        super().__init__(f"HTTP {self.status_code}: {self.status_text}".rstrip(), url=url)


class RetryableStatusError(StatusError):
    """A transient status that was still failing when retries ran out."""

    retryable = True


class NonRetryableStatusError(StatusError):
    """A failure status outside the retryable set; never retried."""


class DecodeError(RequestError):
    """A successful response whose body could not be decoded."""


class RequestCancelledError(RequestError):
    """The caller aborted the request through its cancel signal."""


class ErrorCategory(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    VALIDATION = "validation"
    SERVER = "server"
    DECODE = "decode"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


_RECOVERABLE = {ErrorCategory.NETWORK, ErrorCategory.AUTH, ErrorCategory.SERVER}

_USER_MESSAGES = {
    ErrorCategory.NETWORK: "Could not reach the server. Check your connection and try again.",
    ErrorCategory.AUTH: "Your session has expired. Please sign in again.",
    ErrorCategory.VALIDATION: "The server rejected the request (HTTP {status}). Please check your input.",
    ErrorCategory.SERVER: "The server reported an error (HTTP {status}). Please try again later.",
    ErrorCategory.DECODE: "The server sent a response that could not be read.",
    ErrorCategory.CANCELLED: "The request was cancelled.",
    ErrorCategory.UNKNOWN: "An unexpected error occurred.",
}


def classify_error(exc: BaseException) -> ErrorCategory:
    """Map a terminal request failure onto a coarse category."""

    if isinstance(exc, RequestCancelledError):
        return ErrorCategory.CANCELLED
    if isinstance(exc, NetworkError):
        return ErrorCategory.NETWORK
    if isinstance(exc, DecodeError):
        return ErrorCategory.DECODE
    if isinstance(exc, StatusError):
        code = exc.status_code
        if code in (401, 403):
            return ErrorCategory.AUTH
        if code in (408, 429) or code >= 500:
            return ErrorCategory.SERVER
        if 400 <= code < 500:
            return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


def is_recoverable(exc: BaseException) -> bool:
    return classify_error(exc) in _RECOVERABLE


def user_message(exc: BaseException) -> str:
    """Return one final message for display; never mentions retry counts."""

    category = classify_error(exc)
    status = getattr(exc, "status_code", "")
    return _USER_MESSAGES[category].format(status=status)


__all__ = [
    "DecodeError",
    "ErrorCategory",
    "NetworkError",
    "NonRetryableStatusError",
    "RequestCancelledError",
    "RequestError",
    "RetryableStatusError",
    "StatusError",
    "classify_error",
    "is_recoverable",
    "user_message",
]
