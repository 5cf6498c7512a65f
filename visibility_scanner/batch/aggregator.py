"""
Metrics aggregation for completed batch scans.

Folds per-question counters and the iteration log into the metrics payload
stored on the batch and shown in reports:

- overall_exposure_rate: mean of the questions' average exposure rates,
  so every question weighs the same regardless of how many calls succeeded
- sentiment_distribution: summed sentiment counters with percentages
- provider_scores: mentions / successful calls per provider
- share_of_voice: brand vs competitor mention counts over successful calls
- keyword_scores: share of successful answers containing each brand keyword
- best_questions / worst_questions: top and bottom 3 by exposure
- avg_mention_position, total_successful, total_failed, error_summary

Every percentage in the payload is rounded to one decimal place.
"""

import logging
from collections import Counter
from typing import Any

from visibility_scanner.batch.models import BatchScan, Iteration, Question

logger = logging.getLogger(__name__)

PERCENT_DECIMALS = 1
RANKED_QUESTION_COUNT = 3


def percentage(part: float, whole: float) -> float:
    """``part / whole * 100`` rounded to one decimal, 0.0 when whole is 0."""
    if not whole:
        return 0.0
    return round(part / whole * 100, PERCENT_DECIMALS)


def mean_rate(rates: list[float]) -> float:
    """Mean of percentages rounded to one decimal, 0.0 for no values."""
    if not rates:
        return 0.0
    return round(sum(rates) / len(rates), PERCENT_DECIMALS)


def question_exposure_rates(question: Question) -> tuple[dict[str, float], float]:
    """
    Per-provider exposure rates and their average for one question.

    A provider's rate is mention_count / successful iterations.

    Returns:
        (rates keyed by provider, average over providers)
    """
    rates = {
        name: percentage(progress.mention_count, progress.completed)
        for name, progress in question.progress.items()
    }
    return rates, mean_rate(list(rates.values()))


def _question_rate(question: Question) -> float:
    if question.avg_exposure_rate is not None:
        return question.avg_exposure_rate
    return question_exposure_rates(question)[1]


def aggregate_batch_metrics(
    batch: BatchScan,
    questions: list[Question],
    iterations: list[Iteration],
) -> dict[str, Any]:
    """
    Build the aggregated metrics payload for a batch.

    Args:
        batch: Batch being completed (provides brand keywords/competitors)
        questions: Finalized questions with progress counters
        iterations: All iteration rows of the batch

    Returns:
        Metrics dict (JSON serializable)
    """
    question_rates = {q.id: _question_rate(q) for q in questions}
    overall = mean_rate(list(question_rates.values()))

    sentiment_counts = Counter()
    provider_totals: dict[str, dict[str, int]] = {}
    for question in questions:
        for name, progress in question.progress.items():
            sentiment_counts["positive"] += progress.sentiment_positive
            sentiment_counts["neutral"] += progress.sentiment_neutral
            sentiment_counts["negative"] += progress.sentiment_negative
            totals = provider_totals.setdefault(name, {"mentions": 0, "successful": 0})
            totals["mentions"] += progress.mention_count
            totals["successful"] += progress.completed

    sentiment_total = sum(sentiment_counts.values())
    sentiment_distribution = {
        label: {
            "count": sentiment_counts[label],
            "percentage": percentage(sentiment_counts[label], sentiment_total),
        }
        for label in ("positive", "neutral", "negative")
    }

    provider_scores = {
        name: {
            "mentions": totals["mentions"],
            "successful": totals["successful"],
            "exposure_rate": percentage(totals["mentions"], totals["successful"]),
        }
        for name, totals in provider_totals.items()
    }

    successful = [i for i in iterations if i.status == "success"]
    failed = [i for i in iterations if i.status == "failed"]

    ranked = sorted(
        questions, key=lambda q: (-question_rates[q.id], q.question_order)
    )
    ranked_entries = [
        {
            "question_id": q.id,
            "question_text": q.question_text,
            "exposure_rate": question_rates[q.id],
        }
        for q in ranked
    ]
    worst = sorted(ranked_entries, key=lambda e: e["exposure_rate"])

    positions = [
        i.mention_position
        for i in successful
        if i.brand_mentioned and i.mention_position is not None
    ]

    metrics = {
        "overall_exposure_rate": overall,
        "total_questions": len(questions),
        "total_successful": len(successful),
        "total_failed": len(failed),
        "sentiment_distribution": sentiment_distribution,
        "provider_scores": provider_scores,
        "share_of_voice": compute_share_of_voice(
            successful, batch.brand_name, batch.settings.brand_competitors
        ),
        "keyword_scores": compute_keyword_scores(
            successful, batch.settings.brand_keywords
        ),
        "best_questions": ranked_entries[:RANKED_QUESTION_COUNT],
        "worst_questions": worst[:RANKED_QUESTION_COUNT],
        "avg_mention_position": (
            round(sum(positions) / len(positions), PERCENT_DECIMALS) if positions else None
        ),
        "error_summary": dict(Counter(i.error_kind or "UNKNOWN" for i in failed)),
    }

    logger.info(
        f"Aggregated batch {batch.id}: exposure={overall}%, "
        f"successful={len(successful)}, failed={len(failed)}"
    )
    return metrics


def compute_share_of_voice(
    successful: list[Iteration], brand_name: str, competitors: list[str]
) -> dict[str, dict[str, float]]:
    """
    Mention counts of the brand and each competitor as a share of all mentions.

    Example:
        brand mentioned in 3 answers, Globex in 1 -> Acme 75.0%, Globex 25.0%
    """
    counts = {brand_name: sum(1 for i in successful if i.brand_mentioned)}
    for competitor in competitors:
        counts[competitor] = sum(
            1 for i in successful if i.competitors_mentioned.get(competitor)
        )

    total = sum(counts.values())
    return {
        name: {"mentions": count, "percentage": percentage(count, total)}
        for name, count in counts.items()
    }


def compute_keyword_scores(
    successful: list[Iteration], keywords: list[str]
) -> dict[str, float]:
    """Percentage of successful answers containing each keyword (case-insensitive)."""
    scores = {}
    for keyword in keywords:
        needle = keyword.lower()
        hits = sum(1 for i in successful if needle in (i.response_text or "").lower())
        scores[keyword] = percentage(hits, len(successful))
    return scores
