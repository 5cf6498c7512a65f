"""
Sentiment enrichment for brand mentions.

Sentiment is an optional enrichment joined to mention detection by
best_effort(): if the classifier fails for any reason the iteration still
succeeds and records "neutral".

Classifiers:
- LLMSentimentClassifier: secondary provider call returning a JSON verdict,
  with a keyword reading of the reply when the JSON cannot be parsed
- LexicalSentimentClassifier: deterministic word lists scanned in a window
  around each brand occurrence (offline, used in tests and dry runs)

Example:
    >>> classifier = LexicalSentimentClassifier()
    >>> await classifier.classify("Acme is the best option.", "Acme")
    'positive'
"""

import json
import logging
import re
from collections.abc import Awaitable
from typing import Literal, Protocol, TypeVar

from visibility_scanner.llm_runner.models import ProviderClient
from visibility_scanner.llm_runner.query import query_provider

Sentiment = Literal["positive", "neutral", "negative"]
SENTIMENTS: tuple[str, ...] = ("positive", "neutral", "negative")
DEFAULT_SENTIMENT: Sentiment = "neutral"

POSITIVE_WORDS = ("best", "great", "excellent", "recommended", "top")
NEGATIVE_WORDS = ("worst", "bad", "avoid", "poor", "problem")

# Characters inspected on each side of a brand occurrence
LEXICAL_WINDOW_CHARS = 100

SENTIMENT_PROMPT_TEMPLATE = """Analyze how the brand "{brand_name}" is described in the answer below.

Answer:
\"\"\"
{answer_text}
\"\"\"

Respond with JSON only, using this shape:
{{"sentiment": "positive" | "neutral" | "negative", "confidence": 0.0-1.0, "reason": "short explanation"}}"""

_CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SentimentClassifier(Protocol):
    """Classifies how an answer talks about a brand."""

    async def classify(self, text: str, brand_name: str) -> str:
        """Return "positive", "neutral" or "negative"."""
        ...


async def best_effort(awaitable: Awaitable[T], default: T, description: str = "operation") -> T:
    """
    Await an optional enrichment, returning ``default`` on any failure.

    Args:
        awaitable: Enrichment coroutine
        default: Value returned when the enrichment raises
        description: Label used in the warning log

    Returns:
        The enrichment's result, or ``default``
    """
    try:
        return await awaitable
    except Exception as e:
        logger.warning(f"{description} failed, using default {default!r}: {e}")
        return default


def parse_sentiment_reply(reply: str) -> str:
    """
    Read a sentiment label out of a classifier reply.

    Accepts a JSON object (optionally wrapped in a ``` code fence). When the
    reply is not valid JSON, falls back to looking for the words "positive"
    or "negative" in the text.

    Example:
        >>> parse_sentiment_reply('```json\\n{"sentiment": "Negative"}\\n```')
        'negative'
        >>> parse_sentiment_reply("Mostly positive tone")
        'positive'
    """
    cleaned = _CODE_FENCE_PATTERN.sub("", reply.strip()).strip()

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        lowered = reply.lower()
        if "positive" in lowered:
            return "positive"
        if "negative" in lowered:
            return "negative"
        return DEFAULT_SENTIMENT

    label = str(data.get("sentiment", "")).strip().lower() if isinstance(data, dict) else ""
    return label if label in SENTIMENTS else DEFAULT_SENTIMENT


class LLMSentimentClassifier:
    """
    Sentiment via a secondary lightweight provider call.

    Attributes:
        client: Provider client used for classification
        timeout_ms: Timeout for the classification call
    """

    def __init__(self, client: ProviderClient, timeout_ms: int = 15_000):
        self.client = client
        self.timeout_ms = timeout_ms

    async def classify(self, text: str, brand_name: str) -> str:
        prompt = SENTIMENT_PROMPT_TEMPLATE.format(
            brand_name=brand_name, answer_text=text
        )
        response = await query_provider(
            self.client, prompt, self.timeout_ms, provider_name="sentiment"
        )
        return parse_sentiment_reply(response.text)


class LexicalSentimentClassifier:
    """Deterministic word-list sentiment around each brand occurrence."""

    def __init__(
        self,
        positive_words: tuple[str, ...] = POSITIVE_WORDS,
        negative_words: tuple[str, ...] = NEGATIVE_WORDS,
        window_chars: int = LEXICAL_WINDOW_CHARS,
    ):
        self.positive_words = positive_words
        self.negative_words = negative_words
        self.window_chars = window_chars

    async def classify(self, text: str, brand_name: str) -> str:
        lowered = text.lower()
        brand = brand_name.lower()
        positive = negative = 0

        start = lowered.find(brand)
        while start != -1:
            window = lowered[
                max(0, start - self.window_chars) : start + len(brand) + self.window_chars
            ]
            positive += sum(1 for w in self.positive_words if re.search(rf"\b{w}\b", window))
            negative += sum(1 for w in self.negative_words if re.search(rf"\b{w}\b", window))
            start = lowered.find(brand, start + len(brand))

        if positive > negative:
            return "positive"
        if negative > positive:
            return "negative"
        return DEFAULT_SENTIMENT


def build_sentiment_classifier(
    method: str, client: ProviderClient | None = None, timeout_ms: int = 15_000
) -> SentimentClassifier | None:
    """
    Create the classifier for a configured sentiment method.

    Args:
        method: "llm", "lexical" or "none"
        client: Provider client, required for "llm"
        timeout_ms: Timeout for LLM classification calls

    Returns:
        Classifier, or None when sentiment is disabled

    Raises:
        ValueError: If method is unknown or "llm" has no client
    """
    if method == "none":
        return None
    if method == "lexical":
        return LexicalSentimentClassifier()
    if method == "llm":
        if client is None:
            raise ValueError("LLM sentiment classification requires a provider client")
        return LLMSentimentClassifier(client, timeout_ms=timeout_ms)
    raise ValueError(f"Unknown sentiment method: '{method}'")
