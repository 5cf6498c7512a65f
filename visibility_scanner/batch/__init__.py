"""
Batch scan execution package.

Public API (leaf modules only; import the engine, planner and commands from
their own modules):
    - classify_error / ErrorClassification: Fault -> retry/skip/pause/fail
    - calculate_backoff_delay / should_retry / RetryPolicy: Retry backoff
    - CircuitBreaker / get_circuit_breaker: Per-provider failure guard
    - BatchScan, Question, Iteration, SettingsSnapshot: Data model
"""

from visibility_scanner.batch.circuit_breaker import (
    CircuitBreaker,
    get_circuit_breaker,
)
from visibility_scanner.batch.errors import (
    ErrorClassification,
    RetryPolicy,
    calculate_backoff_delay,
    classify_error,
    should_retry,
    summarize_errors,
)
from visibility_scanner.batch.models import (
    BatchRunResult,
    BatchScan,
    Iteration,
    ProviderSnapshot,
    Question,
    ResumePoint,
    SettingsSnapshot,
)

__all__ = [
    "BatchRunResult",
    "BatchScan",
    "CircuitBreaker",
    "ErrorClassification",
    "Iteration",
    "ProviderSnapshot",
    "Question",
    "ResumePoint",
    "RetryPolicy",
    "SettingsSnapshot",
    "calculate_backoff_delay",
    "classify_error",
    "get_circuit_breaker",
    "should_retry",
    "summarize_errors",
]
