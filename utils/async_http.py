"""Shared asynchronous HTTP client utilities."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

import httpx
from opentelemetry.trace import Tracer

from .retry import Decoder, PolicyOverrides, RetryingRequestExecutor, RetryPolicy, Sleep

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_READ_TIMEOUT = 20.0
DEFAULT_TOTAL_TIMEOUT = 30.0


class AsyncHTTP:
    """Wrapper around :class:`httpx.AsyncClient` with shared retry policy."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        follow_redirects: bool = True,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Sleep] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        tracer: Optional[Tracer] = None,
    ) -> None:
        total_timeout = timeout or DEFAULT_TOTAL_TIMEOUT
        self._timeout = float(total_timeout)
        self._client = httpx.AsyncClient(
            base_url=base_url or "",
            headers=dict(headers or {}),
            timeout=httpx.Timeout(
                total_timeout,
                connect=min(DEFAULT_CONNECT_TIMEOUT, total_timeout),
                read=min(DEFAULT_READ_TIMEOUT, total_timeout),
            ),
            follow_redirects=follow_redirects,
            transport=transport,
        )
        self._executor = RetryingRequestExecutor(
            self._client, policy=policy, sleep=sleep, tracer=tracer
        )

    @property
    def policy(self) -> RetryPolicy:
        return self._executor.policy

    @property
    def timeout(self) -> float:
        return self._timeout

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "AsyncHTTP":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Optional[Any] = None,
        data: Optional[Any] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        policy_overrides: PolicyOverrides = None,
        cancel_event: Optional[asyncio.Event] = None,
        decoder: Optional[Decoder] = None,
    ) -> Any:
        """Send ``method url`` through the retrying executor and decode the body."""

        extra: dict[str, Any] = {}
        if timeout is not None:
            extra["timeout"] = timeout
        request = self._client.build_request(
            method,
            url,
            params=params,
            json=json,
            data=data,
            headers=headers,
            **extra,
        )
        logger.debug("AsyncHTTP request", extra={"method": method, "url": str(request.url)})
        return await self._executor.execute(
            request, policy_overrides, cancel_event=cancel_event, decoder=decoder
        )

    async def get(self, url: str, **kw: Any) -> Any:
        return await self.request("GET", url, **kw)

    async def post(self, url: str, **kw: Any) -> Any:
        return await self.request("POST", url, **kw)

    async def put(self, url: str, **kw: Any) -> Any:
        return await self.request("PUT", url, **kw)

    async def patch(self, url: str, **kw: Any) -> Any:
        return await self.request("PATCH", url, **kw)

    async def delete(self, url: str, **kw: Any) -> Any:
        return await self.request("DELETE", url, **kw)
