"""Test configuration helpers and shared fixtures."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Iterable, List, Sequence, Union

import httpx
import pytest
import pytest_asyncio

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("SETTINGS_SKIP_DOTENV", "1")

ScriptItem = Union[int, tuple, bytes, Exception]


class ScriptedTransport:
    """Replay a fixed script of responses and transport errors.

    Items are a status code, a ``(status, json_payload)`` tuple, a
    ``(status, bytes)`` tuple, or an exception to raise. The last item repeats
    once the script runs out.
    """

    def __init__(self, script: Sequence[ScriptItem]) -> None:
        if not script:
            raise ValueError("script must not be empty")
        self.script: List[ScriptItem] = list(script)
        self.requests: List[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.script[min(len(self.requests), len(self.script)) - 1]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, tuple):
            status, body = item
            if isinstance(body, bytes):
                return httpx.Response(status, content=body)
            return httpx.Response(status, json=body)
        return httpx.Response(item)

    def mock(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


class SleepRecorder:
    """Async stand-in for :func:`asyncio.sleep` that records delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest_asyncio.fixture
async def scripted():
    """Factory returning a transport and a client bound to it."""

    clients: List[httpx.AsyncClient] = []

    def _build(script: Iterable[Any]):
        transport = ScriptedTransport(list(script))
        client = httpx.AsyncClient(transport=transport.mock())
        clients.append(client)
        return transport, client

    yield _build

    for client in clients:
        await client.aclose()
