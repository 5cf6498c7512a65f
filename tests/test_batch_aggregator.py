"""Tests for batch/aggregator.py."""

from visibility_scanner.batch.aggregator import (
    aggregate_batch_metrics,
    compute_keyword_scores,
    compute_share_of_voice,
    mean_rate,
    percentage,
    question_exposure_rates,
)
from visibility_scanner.batch.models import (
    BatchScan,
    Iteration,
    ProviderProgress,
    ProviderSnapshot,
    Question,
    SettingsSnapshot,
)


def _batch() -> BatchScan:
    settings = SettingsSnapshot(
        providers=[ProviderSnapshot("openai", "openai", "gpt-4o-mini", 2, 2)],
        timeout_per_call_ms=30_000,
        brand_name="Acme",
        brand_keywords=["Acme Cloud"],
        brand_competitors=["Globex"],
    )
    return BatchScan(
        id="b-1",
        owner="tester",
        brand_name="Acme",
        status="running",
        settings=settings,
        total_questions=2,
        total_iterations=4,
        estimated_credits=8,
    )


def _question(qid, order, completed, mentions, positive=0, neutral=0, total=2):
    return Question(
        id=qid,
        batch_scan_id="b-1",
        question_text=f"Question {order}?",
        question_order=order,
        status="completed",
        progress={
            "openai": ProviderProgress(
                provider="openai",
                total=total,
                completed=completed,
                mention_count=mentions,
                sentiment_positive=positive,
                sentiment_neutral=neutral,
            )
        },
    )


def _iteration(qid, index, text, mentioned, position=None, competitors=None):
    return Iteration(
        question_id=qid,
        provider="openai",
        iteration_index=index,
        status="success",
        response_text=text,
        brand_mentioned=mentioned,
        mention_position=position,
        competitors_mentioned=competitors or {},
    )


# ============================================================================
# Helpers
# ============================================================================


def test_percentage_rounds_to_one_decimal():
    assert percentage(1, 3) == 33.3
    assert percentage(2, 3) == 66.7
    assert percentage(5, 0) == 0.0


def test_mean_rate_empty():
    assert mean_rate([]) == 0.0
    assert mean_rate([50.0, 100.0]) == 75.0


def test_question_exposure_rates_uses_successful_calls():
    question = _question("q1", 0, completed=2, mentions=1, total=3)
    rates, avg = question_exposure_rates(question)
    assert rates == {"openai": 50.0}
    assert avg == 50.0


# ============================================================================
# Batch metrics
# ============================================================================


def test_two_questions_half_mentions_give_fifty_percent():
    questions = [
        _question("q1", 0, completed=2, mentions=1, neutral=1),
        _question("q2", 1, completed=2, mentions=1, positive=1),
    ]
    iterations = [
        _iteration("q1", 0, "Acme is fine", True, 1),
        _iteration("q1", 1, "nothing", False),
        _iteration("q2", 0, "Acme Cloud rocks", True, 2),
        _iteration("q2", 1, "Globex only", False, competitors={"Globex": True}),
    ]

    metrics = aggregate_batch_metrics(_batch(), questions, iterations)

    assert metrics["overall_exposure_rate"] == 50.0
    assert metrics["total_successful"] == 4
    assert metrics["total_failed"] == 0
    assert metrics["provider_scores"]["openai"] == {
        "mentions": 2,
        "successful": 4,
        "exposure_rate": 50.0,
    }
    assert metrics["sentiment_distribution"]["positive"] == {"count": 1, "percentage": 50.0}
    assert metrics["avg_mention_position"] == 1.5


def test_questions_weigh_equally_regardless_of_successes():
    """1/1 and 0/3 average to 50%, not 25% of raw mentions."""
    questions = [
        _question("q1", 0, completed=1, mentions=1, total=3),
        _question("q2", 1, completed=3, mentions=0, total=3),
    ]
    metrics = aggregate_batch_metrics(_batch(), questions, [])

    assert metrics["overall_exposure_rate"] == 50.0
    assert metrics["provider_scores"]["openai"]["exposure_rate"] == 25.0


def test_best_and_worst_questions():
    questions = [
        _question("q1", 0, completed=2, mentions=0),
        _question("q2", 1, completed=2, mentions=2),
        _question("q3", 2, completed=2, mentions=1),
    ]
    metrics = aggregate_batch_metrics(_batch(), questions, [])

    assert [q["question_id"] for q in metrics["best_questions"]] == ["q2", "q3", "q1"]
    assert metrics["worst_questions"][0]["question_id"] == "q1"


def test_failed_iterations_counted_by_kind():
    failed = Iteration(
        question_id="q1",
        provider="openai",
        iteration_index=0,
        status="failed",
        error_kind="TIMEOUT",
    )
    metrics = aggregate_batch_metrics(
        _batch(), [_question("q1", 0, completed=0, mentions=0)], [failed]
    )
    assert metrics["total_failed"] == 1
    assert metrics["error_summary"] == {"TIMEOUT": 1}
    assert metrics["avg_mention_position"] is None


def test_share_of_voice():
    successful = [
        _iteration("q1", 0, "Acme", True),
        _iteration("q1", 1, "Acme and Globex", True, competitors={"Globex": True}),
        _iteration("q1", 2, "Acme", True),
    ]
    share = compute_share_of_voice(successful, "Acme", ["Globex"])
    assert share["Acme"] == {"mentions": 3, "percentage": 75.0}
    assert share["Globex"] == {"mentions": 1, "percentage": 25.0}


def test_keyword_scores_case_insensitive():
    successful = [
        _iteration("q1", 0, "Try ACME CLOUD today", True),
        _iteration("q1", 1, "Nothing here", False),
    ]
    assert compute_keyword_scores(successful, ["Acme Cloud"]) == {"Acme Cloud": 50.0}
