"""
Tests for batch/errors.py: error classification, backoff and retry budget.
"""

import asyncio
import random

import httpx
import pytest

from visibility_scanner.batch.errors import (
    ACTION_FAIL,
    ACTION_PAUSE,
    ACTION_RETRY,
    ACTION_SKIP,
    DEFAULT_RETRY_POLICY,
    RetryPolicy,
    calculate_backoff_delay,
    classify_error,
    policy_for,
    should_retry,
    summarize_errors,
)
from visibility_scanner.exceptions import (
    CircuitOpenError,
    DatabaseQueryError,
    InsufficientCreditsError,
    ProviderAuthenticationError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderServerError,
    ProviderTimeoutError,
)


class NoJitter(random.Random):
    def random(self):
        return 0.0


class MaxJitter(random.Random):
    def random(self):
        return 0.999


# ============================================================================
# Classification
# ============================================================================


@pytest.mark.parametrize(
    "error,kind,action",
    [
        (ProviderRateLimitError("slow down"), "RATE_LIMIT", ACTION_RETRY),
        (ProviderTimeoutError("too slow"), "TIMEOUT", ACTION_SKIP),
        (asyncio.TimeoutError(), "TIMEOUT", ACTION_SKIP),
        (httpx.ReadTimeout("read timed out"), "TIMEOUT", ACTION_SKIP),
        (httpx.ConnectError("refused"), "NETWORK", ACTION_RETRY),
        (ProviderNetworkError("unreachable"), "NETWORK", ACTION_RETRY),
        (ProviderAuthenticationError("nope"), "AUTH", ACTION_FAIL),
        (ProviderServerError("boom"), "SERVER", ACTION_RETRY),
        (ProviderResponseError("missing choices"), "PARSE", ACTION_SKIP),
        (InsufficientCreditsError("out of credits"), "CREDIT", ACTION_PAUSE),
        (CircuitOpenError("openai"), "CIRCUIT_OPEN", ACTION_SKIP),
        (DatabaseQueryError("database is locked"), "NETWORK", ACTION_RETRY),
    ],
)
def test_typed_errors_are_classified(error, kind, action):
    classification = classify_error(error)
    assert classification.kind == kind
    assert classification.action == action


@pytest.mark.parametrize(
    "message,kind",
    [
        ("HTTP 429 Too Many Requests", "RATE_LIMIT"),
        ("Monthly quota exceeded", "RATE_LIMIT"),
        ("The operation was aborted", "TIMEOUT"),
        ("read ECONNRESET", "TIMEOUT"),
        ("fetch failed: ENOTFOUND api.example.com", "NETWORK"),
        ("401 Unauthorized", "AUTH"),
        ("Invalid API key provided", "AUTH"),
        ("502 Bad Gateway", "SERVER"),
        ("Unexpected token < in JSON at position 0", "PARSE"),
        ("Insufficient balance", "CREDIT"),
        ("something odd happened", "UNKNOWN"),
    ],
)
def test_messages_are_classified(message, kind):
    assert classify_error(RuntimeError(message)).kind == kind


def test_rate_limit_defaults():
    c = classify_error("rate limit exceeded")
    assert c.retry_delay_ms == 60_000
    assert c.max_retries == 5
    assert c.pause_reason == "rate_limit"


def test_auth_classification_carries_pause_reason():
    c = classify_error(ProviderAuthenticationError("403 Forbidden"))
    assert c.pause_reason == "auth_error"
    assert c.is_critical


def test_unknown_errors_fail_open():
    c = classify_error(ValueError("weird"))
    assert c.action == ACTION_SKIP
    assert not c.is_critical


def test_empty_message_falls_back_to_type_name():
    assert classify_error(KeyError()).message == "KeyError"


def test_exhausted_retry_with_pause_reason_pauses():
    c = classify_error("connection refused").exhausted()
    assert c.action == ACTION_PAUSE
    assert c.pause_reason == "network_error"


def test_exhausted_retry_without_pause_reason_skips():
    assert classify_error("503 service unavailable").exhausted().action == ACTION_SKIP


def test_exhausted_leaves_non_retry_actions_alone():
    c = classify_error("401")
    assert c.exhausted() is c


# ============================================================================
# Backoff
# ============================================================================


def test_backoff_without_jitter_doubles():
    delays = [calculate_backoff_delay(a, rng=NoJitter()) for a in range(4)]
    assert delays == [1000, 2000, 4000, 8000]


def test_backoff_jitter_is_bounded():
    for attempt in range(4):
        exponential = 1000 * 2**attempt
        delay = calculate_backoff_delay(attempt, rng=MaxJitter())
        assert exponential <= delay <= exponential * 1.2


def test_backoff_is_capped():
    policy = RetryPolicy(base_delay_ms=10_000, max_delay_ms=30_000)
    assert calculate_backoff_delay(5, policy, rng=MaxJitter()) == 30_000


def test_three_retries_have_strictly_increasing_capped_delays():
    classification = classify_error(ProviderServerError("500"))
    policy = policy_for(classification)
    rng = random.Random(1234)

    delays = []
    attempt = 0
    while should_retry(attempt, classification):
        delays.append(calculate_backoff_delay(attempt, policy, rng))
        attempt += 1

    assert attempt == 3
    assert delays[0] < delays[1] < delays[2]
    assert all(d <= policy.max_delay_ms for d in delays)


def test_policy_uses_classification_delay():
    policy = policy_for(classify_error("ECONNREFUSED connection"))
    assert policy.base_delay_ms == 30_000
    assert policy.max_retries == 3
    assert policy.max_delay_ms == DEFAULT_RETRY_POLICY.max_delay_ms


def test_should_retry_only_for_retry_actions():
    assert should_retry(0, classify_error("429"))
    assert not should_retry(5, classify_error("429"))
    assert not should_retry(0, classify_error("401"))


def test_summarize_errors():
    summary = summarize_errors(
        [classify_error("429"), classify_error("401"), classify_error("weird")]
    )
    assert summary["total"] == 3
    assert summary["by_kind"] == {"RATE_LIMIT": 1, "AUTH": 1, "UNKNOWN": 1}
    assert summary["critical"] == 1
    assert summary["recoverable"] == 2
