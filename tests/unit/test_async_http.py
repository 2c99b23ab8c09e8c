"""Unit tests for the async HTTP wrapper and retry behaviour."""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import ScriptedTransport
from utils.async_http import AsyncHTTP
from utils.http_errors import NonRetryableStatusError, RetryableStatusError
from utils.retry import RetryPolicy

pytestmark = pytest.mark.asyncio


async def test_async_http_retries_on_http_error(sleep_recorder, caplog):
    transport = ScriptedTransport([httpx.ConnectError("boom"), (200, {"ok": True})])
    client = AsyncHTTP(
        base_url="https://example.com", transport=transport.mock(), sleep=sleep_recorder
    )

    with caplog.at_level("WARNING"):
        payload = await client.get("/resource")

    assert payload == {"ok": True}
    assert transport.calls == 2
    assert sleep_recorder.delays == [1.0]
    assert any("retrying in" in record.message for record in caplog.records)

    await client.aclose()


async def test_async_http_helper_methods_forward_to_request(sleep_recorder):
    transport = ScriptedTransport([204])

    async with AsyncHTTP(
        base_url="https://example.com", transport=transport.mock(), sleep=sleep_recorder
    ) as client:
        for helper in (client.post, client.put, client.patch, client.delete):
            assert await helper("/resource") is None

    assert [request.method for request in transport.requests] == [
        "POST",
        "PUT",
        "PATCH",
        "DELETE",
    ]
    assert all(r.url == "https://example.com/resource" for r in transport.requests)


async def test_async_http_encodes_json_and_params(sleep_recorder):
    transport = ScriptedTransport([(200, {"created": True})])

    async with AsyncHTTP(
        base_url="https://example.com",
        headers={"X-Client": "tests"},
        transport=transport.mock(),
        sleep=sleep_recorder,
    ) as client:
        await client.post("/items", json={"name": "a"}, params={"dry_run": "1"})

    sent = transport.requests[0]
    assert sent.url.params["dry_run"] == "1"
    assert json.loads(sent.content) == {"name": "a"}
    assert sent.headers["X-Client"] == "tests"


async def test_async_http_applies_policy_and_overrides(sleep_recorder):
    transport = ScriptedTransport([503])

    async with AsyncHTTP(
        transport=transport.mock(),
        policy=RetryPolicy(max_retries=1, retryable_statuses=frozenset({429})),
        sleep=sleep_recorder,
    ) as client:
        assert client.policy.max_retries == 1
        with pytest.raises(NonRetryableStatusError):
            await client.get("https://example.com/busy")
        assert transport.calls == 1

        transport.requests.clear()
        with pytest.raises(RetryableStatusError):
            await client.get(
                "https://example.com/busy", policy_overrides={"retryable_statuses": {503}}
            )

    assert transport.calls == 2
    assert sleep_recorder.delays == [1.0]


async def test_async_http_per_request_timeout(sleep_recorder):
    transport = ScriptedTransport([(200, {})])

    async with AsyncHTTP(
        base_url="https://example.com", transport=transport.mock(), sleep=sleep_recorder
    ) as client:
        await client.get("/slow", timeout=2.5)
        await client.get("/default")

    slow, default = transport.requests
    assert slow.extensions["timeout"]["read"] == 2.5
    assert default.extensions["timeout"]["read"] == 20.0
