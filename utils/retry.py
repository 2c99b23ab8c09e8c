"""Retry policy and the retrying request executor.

The executor sends one logical request through a transport (anything with an
``async send(request) -> httpx.Response`` method, such as
:class:`httpx.AsyncClient`), retries network failures and retryable statuses
with bounded exponential backoff, and surfaces exactly one result: the decoded
payload or a :class:`~utils.http_errors.RequestError`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, fields, replace
from functools import partial
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    FrozenSet,
    Mapping,
    Optional,
    Protocol,
    TypeVar,
    Union,
)

import httpx
from opentelemetry.trace import Tracer, get_current_span
from pydantic import TypeAdapter
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from .http_errors import (
    DecodeError,
    NetworkError,
    NonRetryableStatusError,
    RequestCancelledError,
    RequestError,
    RetryableStatusError,
)
from .observability import get_tracer, observe_request, request_context

if TYPE_CHECKING:
    from config.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES: int = 3
DEFAULT_INITIAL_DELAY_SECONDS: float = 1.0
DEFAULT_MAX_DELAY_SECONDS: float = 10.0
DEFAULT_BACKOFF_FACTOR: float = 2.0
DEFAULT_RETRYABLE_STATUSES: FrozenSet[int] = frozenset({408, 429, 500, 502, 503, 504})

Sleep = Callable[[float], Awaitable[Any]]
Decoder = Callable[[httpx.Response], Any]


class Transport(Protocol):
    async def send(self, request: httpx.Request) -> httpx.Response: ...


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff configuration for one call; delays are in seconds."""

    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    retryable_statuses: FrozenSet[int] = DEFAULT_RETRYABLE_STATUSES

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("RetryPolicy.max_retries must be >= 0")
        if self.initial_delay <= 0:
            raise ValueError("RetryPolicy.initial_delay must be > 0")
        if self.max_delay <= 0:
            raise ValueError("RetryPolicy.max_delay must be > 0")
        if self.backoff_factor <= 1:
            raise ValueError("RetryPolicy.backoff_factor must be > 1")
        object.__setattr__(
            self, "retryable_statuses", frozenset(int(s) for s in self.retryable_statuses)
        )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RetryPolicy":
        return cls(
            max_retries=settings.http_max_retries,
            initial_delay=settings.http_initial_delay_seconds,
            max_delay=settings.http_max_delay_seconds,
            backoff_factor=settings.http_backoff_factor,
            retryable_statuses=frozenset(settings.http_retryable_statuses),
        )

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1

    def compute_delay(self, attempt: int) -> float:
        """Delay before the retry that follows the 0-based ``attempt``."""

        try:
            backoff = self.initial_delay * (self.backoff_factor ** max(attempt, 0))
        except OverflowError:
            return self.max_delay
        return min(backoff, self.max_delay)

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in self.retryable_statuses

    def merged(self, overrides: "PolicyOverrides" = None) -> "RetryPolicy":
        """Return a policy with ``overrides`` applied field by field."""

        if overrides is None:
            return self
        if isinstance(overrides, RetryPolicy):
            return overrides

        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown retry policy fields: {', '.join(sorted(unknown))}")
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self


PolicyOverrides = Union[RetryPolicy, Mapping[str, Any], None]


def resolve_policy(
    overrides: PolicyOverrides = None, *, base: Optional[RetryPolicy] = None
) -> RetryPolicy:
    return (base or RetryPolicy()).merged(overrides)


def decode_json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    return response.json()


def model_decoder(model: Any) -> Decoder:
    """Build a decoder validating the JSON body against ``model`` with pydantic."""

    adapter = TypeAdapter(model)

    def _decode(response: httpx.Response) -> Any:
        return adapter.validate_json(response.content)

    return _decode


def _log_retry(retry_state: RetryCallState, *, policy: RetryPolicy, url: str) -> None:
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Request failed, retrying in %.2fs (attempt %d/%d)",
        delay,
        retry_state.attempt_number,
        policy.max_retries,
        extra={
            "attempt": retry_state.attempt_number,
            "max_retries": policy.max_retries,
            "delay": delay,
            "reason": str(exc) if exc else None,
            "url": url,
        },
    )


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, RequestError) and exc.retryable


class RetryingRequestExecutor:
    """Execute requests against a transport with bounded exponential backoff.

    Instances hold no per-call state; concurrent ``execute`` calls are
    independent of each other.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Sleep] = None,
        tracer: Optional[Tracer] = None,
    ) -> None:
        self._transport = transport
        self._policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep
        self._tracer = tracer or get_tracer()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def execute(
        self,
        request: httpx.Request,
        policy_overrides: PolicyOverrides = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        decoder: Optional[Decoder] = None,
    ) -> Any:
        policy = self._policy.merged(policy_overrides)
        decode = decoder or decode_json
        url = str(request.url)
        attempts = 0

        async def attempt() -> Any:
            nonlocal attempts
            attempts += 1
            return await self._attempt(request, policy, decode, cancel_event)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.total_attempts),
            wait=lambda retry_state: policy.compute_delay(retry_state.attempt_number - 1),
            retry=retry_if_exception(_is_retryable),
            before_sleep=partial(_log_retry, policy=policy, url=url),
            sleep=partial(self._backoff, cancel_event=cancel_event, url=url),
            reraise=True,
        )

        with request_context(), observe_request(self._tracer, request.method, url) as span:
            try:
                return await retrying(attempt)
            except RequestError as exc:
                logger.debug(
                    "Request to %s failed after %d attempt(s): %s",
                    url,
                    attempts,
                    exc,
                    extra={"attempts": attempts, "url": url},
                )
                raise
            finally:
                span.set_attribute("http.request.attempts", attempts)

    async def _attempt(
        self,
        request: httpx.Request,
        policy: RetryPolicy,
        decode: Decoder,
        cancel_event: Optional[asyncio.Event],
    ) -> Any:
        url = str(request.url)
        try:
            response = await _until_cancelled(
                lambda: self._transport.send(request), cancel_event, url
            )
        except httpx.TransportError as exc:
            raise NetworkError(_describe(exc), cause=exc, url=url) from exc
        except httpx.DecodingError as exc:
            raise DecodeError(
                f"Could not decode response body: {exc}", cause=exc, url=url
            ) from exc
        except httpx.RequestError as exc:
            raise RequestError(_describe(exc), cause=exc, url=url) from exc

        get_current_span().set_attribute("http.response.status_code", response.status_code)

        if response.is_success:
            try:
                return decode(response)
            except DecodeError:
                raise
            except Exception as exc:
                raise DecodeError(
                    f"Could not decode response body: {exc}", cause=exc, url=url
                ) from exc

        if policy.is_retryable_status(response.status_code):
            raise RetryableStatusError(response.status_code, response.reason_phrase, url=url)
        raise NonRetryableStatusError(response.status_code, response.reason_phrase, url=url)

    async def _backoff(
        self, delay: float, *, cancel_event: Optional[asyncio.Event], url: str
    ) -> None:
        await _until_cancelled(lambda: self._sleep(delay), cancel_event, url)


async def _until_cancelled(
    operation: Callable[[], Awaitable[T]],
    cancel_event: Optional[asyncio.Event],
    url: str,
) -> T:
    """Await ``operation()`` unless ``cancel_event`` fires first."""

    if cancel_event is None:
        return await operation()
    if cancel_event.is_set():
        raise RequestCancelledError("Request cancelled", url=url)

    work = asyncio.ensure_future(operation())
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not work.done():
            work.cancel()

    if work in done:
        return work.result()

    # Let the aborted send unwind before reporting the cancellation.
    await asyncio.gather(work, return_exceptions=True)
    raise RequestCancelledError("Request cancelled", url=url)


async def execute_with_retry(
    request: httpx.Request,
    policy_overrides: PolicyOverrides = None,
    *,
    transport: Transport,
    sleep: Optional[Sleep] = None,
    cancel_event: Optional[asyncio.Event] = None,
    decoder: Optional[Decoder] = None,
    tracer: Optional[Tracer] = None,
) -> Any:
    """Run ``request`` once through a fresh executor with default-merged policy."""

    executor = RetryingRequestExecutor(transport, sleep=sleep, tracer=tracer)
    return await executor.execute(
        request, policy_overrides, cancel_event=cancel_event, decoder=decoder
    )


__all__ = [
    "DEFAULT_BACKOFF_FACTOR",
    "DEFAULT_INITIAL_DELAY_SECONDS",
    "DEFAULT_MAX_DELAY_SECONDS",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RETRYABLE_STATUSES",
    "Decoder",
    "PolicyOverrides",
    "RetryPolicy",
    "RetryingRequestExecutor",
    "Sleep",
    "Transport",
    "decode_json",
    "execute_with_retry",
    "model_decoder",
    "resolve_policy",
]
