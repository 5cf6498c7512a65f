"""
Batch planning: estimates and creation.

A batch is planned from a RuntimeScanConfig before any provider is called:
the planner estimates the credits and duration the run will take, freezes the
settings into a SettingsSnapshot and inserts the pending batch with its
ordered questions. Execution is left to BatchScanEngine.
"""

import logging
import math
import uuid
from dataclasses import dataclass

from visibility_scanner.batch.models import (
    BatchScan,
    ProviderProgress,
    ProviderSnapshot,
    Question,
    SettingsSnapshot,
)
from visibility_scanner.config.constants import (
    DEFAULT_AVG_RESPONSE_MS,
    DEFAULT_ESTIMATE_PARALLELISM,
    INTER_BATCH_DELAY_MS,
)
from visibility_scanner.config.schema import RuntimeScanConfig
from visibility_scanner.storage.store import ScanStore
from visibility_scanner.utils.time import utc_timestamp

logger = logging.getLogger(__name__)


@dataclass
class CreditEstimate:
    """Iteration and credit totals for a planned batch."""

    total_iterations: int
    total_credits: int
    by_provider: dict[str, dict[str, int]]


@dataclass
class DurationEstimate:
    """Expected wall time of a batch, in milliseconds."""

    min_ms: int
    avg_ms: int
    max_ms: int

    @property
    def avg_minutes(self) -> float:
        return round(self.avg_ms / 60_000, 1)


def estimate_credits(
    question_count: int, providers: list[ProviderSnapshot]
) -> CreditEstimate:
    """
    Estimate iterations and credits for a batch.

    Every question is asked ``iterations`` times per provider and each call
    costs the provider's credit_cost.

    Example:
        >>> est = estimate_credits(3, [ProviderSnapshot("openai", "openai", "gpt-4o-mini", 2, 2)])
        >>> est.total_iterations, est.total_credits
        (6, 12)
    """
    by_provider = {}
    for provider in providers:
        iterations = question_count * provider.iterations
        by_provider[provider.name] = {
            "iterations": iterations,
            "credits": iterations * provider.credit_cost,
        }

    return CreditEstimate(
        total_iterations=sum(p["iterations"] for p in by_provider.values()),
        total_credits=sum(p["credits"] for p in by_provider.values()),
        by_provider=by_provider,
    )


def estimate_duration(
    total_iterations: int,
    parallelism: int = DEFAULT_ESTIMATE_PARALLELISM,
    avg_response_ms: int = DEFAULT_AVG_RESPONSE_MS,
) -> DurationEstimate:
    """
    Estimate how long a batch will take.

    Calls are assumed to run ``parallelism`` at a time with a short pause
    between rounds. The range spans 0.7x to 1.5x the average.
    """
    if total_iterations <= 0:
        return DurationEstimate(0, 0, 0)

    rounds = math.ceil(total_iterations / max(parallelism, 1))
    avg_ms = rounds * avg_response_ms + (rounds - 1) * INTER_BATCH_DELAY_MS
    return DurationEstimate(
        min_ms=int(avg_ms * 0.7),
        avg_ms=avg_ms,
        max_ms=int(avg_ms * 1.5),
    )


def calculate_progress(completed: int, total: int) -> float:
    """Percent complete with one decimal; 0.0 for an empty batch."""
    if total <= 0:
        return 0.0
    return round(min(completed, total) / total * 100, 1)


def build_settings_snapshot(config: RuntimeScanConfig) -> SettingsSnapshot:
    """Freeze the parts of a runtime config that a batch needs (no API keys)."""
    settings = config.settings
    return SettingsSnapshot(
        providers=[
            ProviderSnapshot(
                name=p.name,
                provider=p.provider,
                model_name=p.model_name,
                iterations=p.iterations,
                credit_cost=p.credit_cost,
            )
            for p in config.providers
        ],
        timeout_per_call_ms=settings.timeout_per_call_ms,
        brand_name=config.brand.name,
        brand_keywords=list(config.brand.keywords),
        brand_competitors=list(config.brand.competitors),
        pause_check_interval=settings.pause_check_interval,
        max_concurrent_questions=settings.max_concurrent_questions,
        match_mode=settings.match_mode,
        fuzzy_threshold=settings.fuzzy_threshold,
        sentiment_method=config.sentiment.method,
        sentiment_provider=config.sentiment.provider,
    )


def create_batch_scan(
    store: ScanStore,
    config: RuntimeScanConfig,
    questions: list[str] | None = None,
    batch_scan_id: str | None = None,
) -> BatchScan:
    """
    Insert a pending batch and its questions.

    Args:
        store: Backing store
        config: Resolved scan configuration
        questions: Questions to ask (defaults to config.questions)
        batch_scan_id: Explicit id (a random UUID otherwise)

    Returns:
        The created BatchScan (status "pending")

    Raises:
        ValueError: If there are no questions
        DatabaseError: If the insert fails
    """
    texts = [q.strip() for q in (questions if questions is not None else config.questions)]
    texts = [q for q in texts if q]
    if not texts:
        raise ValueError("A batch needs at least one question")

    snapshot = build_settings_snapshot(config)
    credits = estimate_credits(len(texts), snapshot.providers)
    created_at = utc_timestamp()
    batch_scan_id = batch_scan_id or str(uuid.uuid4())

    batch = BatchScan(
        id=batch_scan_id,
        owner=config.owner,
        brand_name=config.brand.name,
        status="pending",
        settings=snapshot,
        total_questions=len(texts),
        total_iterations=credits.total_iterations,
        estimated_credits=credits.total_credits,
        created_at=created_at,
    )
    question_rows = [
        Question(
            id=str(uuid.uuid4()),
            batch_scan_id=batch_scan_id,
            question_text=text,
            question_order=order,
            progress={
                p.name: ProviderProgress(provider=p.name, total=p.iterations)
                for p in snapshot.providers
            },
            created_at=created_at,
        )
        for order, text in enumerate(texts)
    ]

    store.create_batch(batch, question_rows)
    logger.info(
        f"Planned batch {batch_scan_id}: {len(texts)} questions, "
        f"{credits.total_iterations} iterations, {credits.total_credits} credits"
    )
    return batch
