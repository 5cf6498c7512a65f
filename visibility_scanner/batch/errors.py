"""
Error classification and retry policy for batch scans.

Every fault raised while querying a provider is turned into an
ErrorClassification that tells the engine what to do next:

    retry  sleep a backoff delay and try the same iteration again
    skip   record the iteration as failed and move on
    pause  stop the batch; an operator (or a resume event) continues it
    fail   stop the batch permanently

Classification order (first match wins):

    kind        signals                                  action  delay   retries  on exhaustion
    RATE_LIMIT  429, "rate limit", "quota", "too many"   retry   60s     5        pause (rate_limit)
    TIMEOUT     timeouts, "aborted", "econnreset"        skip    -       -        -
    NETWORK     connection, socket, DNS, "fetch"         retry   30s     3        pause (network_error)
    AUTH        401/403, "unauthorized", "api key"       fail    -       -        -  (auth_error)
    SERVER      500/502/503/504                          retry   10s     3        skip
    PARSE       "json", "parse", "syntax"                skip    -       -        -
    CREDIT      "credit", "insufficient", "balance"      pause   -       -        -  (insufficient_credits)
    UNKNOWN     anything else                            skip    -       -        -

Typed exceptions (ProviderRateLimitError, httpx.ConnectError, DatabaseError, ...) are
mapped before falling back to message matching. Storage faults
(DatabaseError) classify as NETWORK.

Backoff:
    delay(attempt) = min(max_delay, base * multiplier**attempt + jitter)
    jitter ~ uniform[0, 0.2 * base * multiplier**attempt]

Example:
    >>> from visibility_scanner.exceptions import ProviderRateLimitError
    >>> c = classify_error(ProviderRateLimitError("429 Too Many Requests"))
    >>> c.kind, c.action, c.retry_delay_ms, c.max_retries
    ('RATE_LIMIT', 'retry', 60000, 5)
"""

import asyncio
import random
import re
from collections import Counter
from dataclasses import dataclass

import httpx

from visibility_scanner.exceptions import (
    CircuitOpenError,
    DatabaseError,
    InsufficientCreditsError,
    ProviderAuthenticationError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderServerError,
    ProviderTimeoutError,
)

# ============================================================================
# Kinds and actions
# ============================================================================

RATE_LIMIT = "RATE_LIMIT"
TIMEOUT = "TIMEOUT"
NETWORK = "NETWORK"
AUTH = "AUTH"
SERVER = "SERVER"
PARSE = "PARSE"
CREDIT = "CREDIT"
CIRCUIT_OPEN = "CIRCUIT_OPEN"
UNKNOWN = "UNKNOWN"

ACTION_RETRY = "retry"
ACTION_SKIP = "skip"
ACTION_PAUSE = "pause"
ACTION_FAIL = "fail"

CRITICAL_ACTIONS = frozenset([ACTION_PAUSE, ACTION_FAIL])


@dataclass(frozen=True)
class ErrorClassification:
    """
    Decision for one fault.

    Attributes:
        kind: Error taxonomy entry (RATE_LIMIT, TIMEOUT, ...)
        action: retry, skip, pause or fail
        message: Original error message (stored as last_error)
        retry_delay_ms: Base backoff delay for retry actions
        max_retries: Retry cap for retry actions
        pause_reason: Batch pause reason for pause/fail actions, and for
            retry actions that pause once retries are exhausted
        user_message: Short operator-facing explanation
    """

    kind: str
    action: str
    message: str
    retry_delay_ms: int | None = None
    max_retries: int = 0
    pause_reason: str | None = None
    user_message: str = ""

    @property
    def is_critical(self) -> bool:
        return self.action in CRITICAL_ACTIONS

    def exhausted(self) -> "ErrorClassification":
        """
        Classification to apply once retries for this fault run out.

        Retry kinds with a pause reason pause the batch; the rest skip.
        """
        if self.action != ACTION_RETRY:
            return self
        action = ACTION_PAUSE if self.pause_reason else ACTION_SKIP
        return ErrorClassification(
            kind=self.kind,
            action=action,
            message=self.message,
            pause_reason=self.pause_reason,
            user_message=self.user_message,
        )


# ============================================================================
# Message patterns
# ============================================================================

_RATE_LIMIT_PATTERN = re.compile(r"\b429\b|rate.?limit|quota|too many requests")
_TIMEOUT_PATTERN = re.compile(r"timeout|timed out|aborted|econnreset")
_NETWORK_PATTERN = re.compile(
    r"network|fetch|enotfound|econnrefused|socket|connection|dns|name resolution"
)
_AUTH_PATTERN = re.compile(
    r"\b40[13]\b|unauthori[sz]ed|forbidden|api key|invalid key|authentication"
)
_SERVER_PATTERN = re.compile(
    r"\b50[0234]\b|internal server|bad gateway|service unavailable|gateway timeout"
)
_PARSE_PATTERN = re.compile(r"json|parse|syntax|unexpected token|malformed")
_CREDIT_PATTERN = re.compile(r"credit|insufficient|balance")


def _rate_limit(message: str) -> ErrorClassification:
    return ErrorClassification(
        kind=RATE_LIMIT,
        action=ACTION_RETRY,
        message=message,
        retry_delay_ms=60_000,
        max_retries=5,
        pause_reason="rate_limit",
        user_message="Provider rate limit reached. The scan will wait and retry.",
    )


def _timeout(message: str) -> ErrorClassification:
    return ErrorClassification(
        kind=TIMEOUT,
        action=ACTION_SKIP,
        message=message,
        user_message="Provider call timed out. Skipping this iteration.",
    )


def _network(message: str) -> ErrorClassification:
    return ErrorClassification(
        kind=NETWORK,
        action=ACTION_RETRY,
        message=message,
        retry_delay_ms=30_000,
        max_retries=3,
        pause_reason="network_error",
        user_message="Network problem reaching the provider. Retrying.",
    )


def _auth(message: str) -> ErrorClassification:
    return ErrorClassification(
        kind=AUTH,
        action=ACTION_FAIL,
        message=message,
        pause_reason="auth_error",
        user_message="Provider rejected the API key. Check credentials.",
    )


def _server(message: str) -> ErrorClassification:
    return ErrorClassification(
        kind=SERVER,
        action=ACTION_RETRY,
        message=message,
        retry_delay_ms=10_000,
        max_retries=3,
        user_message="Provider server error. Retrying.",
    )


def _parse(message: str) -> ErrorClassification:
    return ErrorClassification(
        kind=PARSE,
        action=ACTION_SKIP,
        message=message,
        user_message="Provider returned an unreadable answer. Skipping.",
    )


def _credit(message: str) -> ErrorClassification:
    return ErrorClassification(
        kind=CREDIT,
        action=ACTION_PAUSE,
        message=message,
        pause_reason="insufficient_credits",
        user_message="Insufficient credits. Top up and resume the scan.",
    )


def _unknown(message: str) -> ErrorClassification:
    return ErrorClassification(
        kind=UNKNOWN,
        action=ACTION_SKIP,
        message=message,
        user_message="Unexpected error. Skipping this iteration.",
    )


# Typed exceptions checked before message matching; order mirrors priority
_TYPED_RULES = (
    (ProviderRateLimitError, _rate_limit),
    ((ProviderTimeoutError, httpx.TimeoutException, asyncio.TimeoutError), _timeout),
    ((ProviderNetworkError, httpx.TransportError, ConnectionError), _network),
    # Storage faults
    (DatabaseError, _network),
    (ProviderAuthenticationError, _auth),
    (ProviderServerError, _server),
    (ProviderResponseError, _parse),
    (InsufficientCreditsError, _credit),
)

_MESSAGE_RULES = (
    (_RATE_LIMIT_PATTERN, _rate_limit),
    (_TIMEOUT_PATTERN, _timeout),
    (_NETWORK_PATTERN, _network),
    (_AUTH_PATTERN, _auth),
    (_SERVER_PATTERN, _server),
    (_PARSE_PATTERN, _parse),
    (_CREDIT_PATTERN, _credit),
)


def error_message(error: BaseException | str) -> str:
    """Readable message for an exception, falling back to its type name."""
    if isinstance(error, str):
        return error
    return str(error) or type(error).__name__


def classify_error(error: BaseException | str) -> ErrorClassification:
    """
    Classify a provider or storage fault.

    Args:
        error: Raised exception, or a bare error message

    Returns:
        ErrorClassification for the fault

    Example:
        >>> classify_error("connect ECONNRESET").kind
        'TIMEOUT'
        >>> classify_error(ValueError("Unexpected token < in JSON")).action
        'skip'
    """
    message = error_message(error)

    if isinstance(error, CircuitOpenError):
        return ErrorClassification(
            kind=CIRCUIT_OPEN,
            action=ACTION_SKIP,
            message=message,
            user_message="Provider temporarily disabled after repeated failures.",
        )

    if isinstance(error, BaseException):
        for error_types, factory in _TYPED_RULES:
            if isinstance(error, error_types):
                return factory(message)

    lowered = message.lower()
    for pattern, factory in _MESSAGE_RULES:
        if pattern.search(lowered):
            return factory(message)

    return _unknown(message)


# ============================================================================
# Retry policy
# ============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff configuration.

    Attributes:
        base_delay_ms: Delay before the first retry (before jitter)
        multiplier: Growth factor per attempt
        max_delay_ms: Hard cap for any delay
        max_retries: Default retry cap
        jitter_ratio: Upper bound of jitter as a fraction of the delay
    """

    base_delay_ms: int = 1_000
    multiplier: float = 2.0
    max_delay_ms: int = 60_000
    max_retries: int = 3
    jitter_ratio: float = 0.2


DEFAULT_RETRY_POLICY = RetryPolicy()


def calculate_backoff_delay(
    attempt: int,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    rng: random.Random | None = None,
) -> int:
    """
    Backoff delay in milliseconds for a zero-based retry attempt.

    Args:
        attempt: 0 for the first retry, 1 for the second, ...
        policy: Retry policy
        rng: Random source for jitter (module random when None)

    Returns:
        Delay in milliseconds, never above policy.max_delay_ms

    Example:
        >>> class NoJitter(random.Random):
        ...     def random(self):
        ...         return 0.0
        >>> [calculate_backoff_delay(a, rng=NoJitter()) for a in range(3)]
        [1000, 2000, 4000]
    """
    exponential = policy.base_delay_ms * policy.multiplier**attempt
    jitter = (rng or random).random() * policy.jitter_ratio * exponential
    return int(min(policy.max_delay_ms, exponential + jitter))


def policy_for(classification: ErrorClassification) -> RetryPolicy:
    """Retry policy using the classification's delay and retry cap."""
    return RetryPolicy(
        base_delay_ms=classification.retry_delay_ms or DEFAULT_RETRY_POLICY.base_delay_ms,
        max_retries=classification.max_retries,
    )


def should_retry(attempt_count: int, classification: ErrorClassification) -> bool:
    """
    True while a retry-classified fault still has retry budget.

    Args:
        attempt_count: Retries already performed for this iteration
        classification: Classification of the latest fault
    """
    return (
        classification.action == ACTION_RETRY
        and attempt_count < classification.max_retries
    )


# ============================================================================
# Summaries
# ============================================================================


def summarize_errors(classifications: list[ErrorClassification]) -> dict:
    """
    Summarize a list of classifications for reporting.

    Returns:
        dict with total, by_kind counts, critical (pause/fail) and
        recoverable counts

    Example:
        >>> summarize_errors([classify_error("429"), classify_error("401")])
        {'total': 2, 'by_kind': {'RATE_LIMIT': 1, 'AUTH': 1}, 'critical': 1, 'recoverable': 1}
    """
    by_kind = Counter(c.kind for c in classifications)
    critical = sum(1 for c in classifications if c.is_critical)
    return {
        "total": len(classifications),
        "by_kind": dict(by_kind),
        "critical": critical,
        "recoverable": len(classifications) - critical,
    }
