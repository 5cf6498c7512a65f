"""
Combine mention detection with optional sentiment enrichment.

Detection always runs; sentiment only runs when the brand is mentioned and is
joined through best_effort(), so a failing classifier degrades to "neutral"
instead of failing the iteration.
"""

from visibility_scanner.batch.models import ProviderResult, SettingsSnapshot
from visibility_scanner.extractor.mention_analyzer import detect_brand_mention
from visibility_scanner.extractor.sentiment import (
    DEFAULT_SENTIMENT,
    SentimentClassifier,
    best_effort,
)
from visibility_scanner.llm_runner.models import ProviderResponse


async def analyze_response(
    response: ProviderResponse,
    settings: SettingsSnapshot,
    classifier: SentimentClassifier | None = None,
) -> ProviderResult:
    """
    Analyze a successful provider answer.

    Args:
        response: Raw provider response
        settings: Batch settings holding brand terms and match mode
        classifier: Sentiment classifier, or None to record neutral

    Returns:
        ProviderResult with mention analysis and sentiment (None when the
        brand is not mentioned)
    """
    analysis = detect_brand_mention(
        response.text,
        brand_name=settings.brand_name,
        keywords=settings.brand_keywords,
        competitors=settings.brand_competitors,
        match_mode=settings.match_mode,
        fuzzy_threshold=settings.fuzzy_threshold,
    )

    sentiment = None
    if analysis.brand_mentioned:
        if classifier is None:
            sentiment = DEFAULT_SENTIMENT
        else:
            sentiment = await best_effort(
                classifier.classify(response.text, settings.brand_name),
                default=DEFAULT_SENTIMENT,
                description="Sentiment classification",
            )

    return ProviderResult(
        text=response.text,
        latency_ms=response.latency_ms,
        analysis=analysis,
        sentiment=sentiment,
    )
