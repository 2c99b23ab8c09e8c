from __future__ import annotations

import pytest

from config.config import Settings
from utils.retry import DEFAULT_RETRYABLE_STATUSES, RetryPolicy, resolve_policy


def test_retry_policy_defaults() -> None:
    policy = RetryPolicy()
    assert policy.max_retries == 3
    assert policy.initial_delay == 1.0
    assert policy.max_delay == 10.0
    assert policy.backoff_factor == 2.0
    assert policy.retryable_statuses == frozenset({408, 429, 500, 502, 503, 504})
    assert policy.total_attempts == 4


def test_retry_policy_exponential_backoff() -> None:
    policy = RetryPolicy()
    assert [policy.compute_delay(i) for i in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]


def test_retry_policy_clamps_to_max_delay() -> None:
    policy = RetryPolicy(initial_delay=1.0, backoff_factor=3.0, max_delay=2.0)
    assert policy.compute_delay(2) == 2.0


def test_retry_policy_clamps_when_max_below_initial() -> None:
    policy = RetryPolicy(initial_delay=5.0, max_delay=2.0)
    assert policy.compute_delay(0) == 2.0


def test_retry_policy_survives_huge_attempt_index() -> None:
    assert RetryPolicy().compute_delay(10_000) == 10.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_retries": -1},
        {"initial_delay": 0},
        {"max_delay": -1.0},
        {"backoff_factor": 1.0},
    ],
)
def test_retry_policy_rejects_invalid_values(kwargs) -> None:
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_retryable_statuses_are_normalised_to_frozenset() -> None:
    policy = RetryPolicy(retryable_statuses=[503, "429"])  # type: ignore[arg-type]
    assert policy.retryable_statuses == frozenset({429, 503})
    assert policy.is_retryable_status(429)
    assert not policy.is_retryable_status(404)


def test_merge_is_field_by_field() -> None:
    base = RetryPolicy(max_retries=5, initial_delay=0.5)
    merged = base.merged({"max_retries": 1, "max_delay": None})

    assert merged.max_retries == 1
    assert merged.initial_delay == 0.5
    assert merged.max_delay == base.max_delay
    assert merged.retryable_statuses == DEFAULT_RETRYABLE_STATUSES


def test_merge_with_policy_replaces_whole_policy() -> None:
    override = RetryPolicy(max_retries=0)
    assert RetryPolicy(max_retries=7).merged(override) is override


def test_merge_rejects_unknown_fields() -> None:
    with pytest.raises(ValueError, match="maxRetries"):
        RetryPolicy().merged({"maxRetries": 2})


def test_resolve_policy_without_overrides_returns_defaults() -> None:
    assert resolve_policy() == RetryPolicy()
    assert resolve_policy({"backoff_factor": 3}).backoff_factor == 3


def test_policy_from_settings() -> None:
    settings = Settings(
        http_max_retries=2,
        http_initial_delay_seconds=0.25,
        http_max_delay_seconds=4.0,
        http_backoff_factor=3.0,
        http_retryable_statuses=[503],
    )

    policy = RetryPolicy.from_settings(settings)

    assert policy == RetryPolicy(
        max_retries=2,
        initial_delay=0.25,
        max_delay=4.0,
        backoff_factor=3.0,
        retryable_statuses=frozenset({503}),
    )
