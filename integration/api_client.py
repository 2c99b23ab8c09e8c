"""Authenticated JSON API client built on the retrying HTTP wrapper."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from config.config import Settings
from utils.async_http import AsyncHTTP
from utils.retry import Decoder, PolicyOverrides, RetryPolicy

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class InMemoryTokenStore:
    """Minimal token provider holding one bearer token for the session."""

    def __init__(self, token: Optional[str] = None) -> None:
        self._token = token

    def __call__(self) -> Optional[str]:
        return self._token

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


@dataclass
class ApiClientConfig:
    """Runtime configuration for :class:`ApiClient`."""

    base_url: str
    request_timeout: float
    policy: RetryPolicy


class ApiClient:
    """GET/POST helpers for the backend API with optional bearer auth."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        token_provider: Optional[TokenProvider] = None,
        policy: Optional[RetryPolicy] = None,
        request_timeout: Optional[float] = None,
        http: Optional[AsyncHTTP] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        runtime_settings = settings or Settings()

        resolved_base_url = base_url or runtime_settings.api_base_url
        if not resolved_base_url:
            raise EnvironmentError("API base URL is not configured.")

        if http is not None:
            if policy is not None or request_timeout is not None:
                raise ValueError(
                    "policy and request_timeout cannot be combined with an injected http client."
                )
            self._config = ApiClientConfig(
                base_url=resolved_base_url.rstrip("/"),
                request_timeout=http.timeout,
                policy=http.policy,
            )
            self._http = http
        else:
            self._config = ApiClientConfig(
                base_url=resolved_base_url.rstrip("/"),
                request_timeout=float(request_timeout or runtime_settings.http_timeout_seconds),
                policy=policy or RetryPolicy.from_settings(runtime_settings),
            )
            self._http = AsyncHTTP(
                base_url=self._config.base_url,
                headers={"Content-Type": "application/json"},
                timeout=self._config.request_timeout,
                policy=self._config.policy,
            )
        self._token_provider = token_provider

    @property
    def config(self) -> ApiClientConfig:
        return self._config

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def get(
        self,
        endpoint: str,
        policy_overrides: PolicyOverrides = None,
        *,
        params: Optional[Dict[str, Any]] = None,
        cancel_event: Optional[asyncio.Event] = None,
        decoder: Optional[Decoder] = None,
    ) -> Any:
        return await self._http.get(
            self._url(endpoint),
            params=params,
            headers=await self._headers(),
            policy_overrides=policy_overrides,
            cancel_event=cancel_event,
            decoder=decoder,
        )

    async def post(
        self,
        endpoint: str,
        body: Any,
        policy_overrides: PolicyOverrides = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        decoder: Optional[Decoder] = None,
    ) -> Any:
        """POST ``body`` as JSON; retried requests must tolerate repeat delivery."""

        return await self._http.post(
            self._url(endpoint),
            json=body,
            headers=await self._headers(),
            policy_overrides=policy_overrides,
            cancel_event=cancel_event,
            decoder=decoder,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _url(self, endpoint: str) -> str:
        return f"{self._config.base_url}/{endpoint.lstrip('/')}"

    async def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = await self._resolve_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _resolve_token(self) -> Optional[str]:
        if self._token_provider is None:
            return None
        token = self._token_provider()
        if inspect.isawaitable(token):
            token = await token
        return token or None
