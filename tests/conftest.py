"""
Shared fixtures for visibility scanner tests.

All tests use temporary SQLite databases and MockProviderClient; no test
talks to a real provider.
"""

import pytest

from visibility_scanner.batch.circuit_breaker import CircuitBreaker
from visibility_scanner.batch.planner import create_batch_scan
from visibility_scanner.config.schema import (
    BrandConfig,
    RuntimeProvider,
    RuntimeScanConfig,
    ScanSettings,
    SentimentConfig,
)
from visibility_scanner.storage.store import SQLiteScanStore


def make_runtime_config(
    db_path: str,
    questions: list[str] | None = None,
    providers: list[tuple[str, int]] | None = None,
    max_concurrent_questions: int = 1,
    pause_check_interval: int = 10,
    sentiment_method: str = "none",
) -> RuntimeScanConfig:
    """
    Build a RuntimeScanConfig without touching YAML or the environment.

    Args:
        providers: (name, iterations) pairs; every provider is an "openai"
            type with credit cost 1
    """
    providers = providers or [("openai", 3)]
    return RuntimeScanConfig(
        owner="tester",
        brand=BrandConfig(name="Acme", keywords=["Acme Cloud"], competitors=["Globex"]),
        providers=[
            RuntimeProvider(
                name=name,
                provider="openai",
                model_name="gpt-4o-mini",
                api_key="sk-test-key",
                iterations=iterations,
                credit_cost=1,
            )
            for name, iterations in providers
        ],
        questions=questions or ["Which cloud host is best?"],
        sentiment=SentimentConfig(method=sentiment_method),
        settings=ScanSettings(
            sqlite_db_path=db_path,
            timeout_per_call_ms=5000,
            pause_check_interval=pause_check_interval,
            max_concurrent_questions=max_concurrent_questions,
        ),
    )


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "scans.db")


@pytest.fixture
def store(db_path):
    return SQLiteScanStore(db_path)


@pytest.fixture
def breaker():
    """Isolated breaker with a threshold high enough not to interfere."""
    return CircuitBreaker(failure_threshold=100, reset_timeout_s=60)


@pytest.fixture
def sleeps():
    """Recorded backoff sleeps (seconds)."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def make_config(db_path):
    """Factory for runtime configs pointing at the test database."""

    def _make(**kwargs):
        return make_runtime_config(db_path, **kwargs)

    return _make


@pytest.fixture
def make_batch(store, make_config):
    """Factory creating a pending batch in the test store."""

    def _make(**kwargs):
        return create_batch_scan(store, make_config(**kwargs))

    return _make
