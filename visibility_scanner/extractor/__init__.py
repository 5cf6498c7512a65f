"""
Extractor module for analyzing provider answers.

Public API:
    - MentionAnalysis: Brand mention, paragraph position and competitor map
    - detect_brand_mention: Analyze one answer for the brand and competitors
    - create_brand_pattern: Word-boundary regex for a brand term
    - best_effort: Await an enrichment with a default on failure
    - LLMSentimentClassifier / LexicalSentimentClassifier: Sentiment enrichment
"""

from visibility_scanner.extractor.mention_analyzer import (
    MentionAnalysis,
    create_brand_pattern,
    detect_brand_mention,
)
from visibility_scanner.extractor.sentiment import (
    LexicalSentimentClassifier,
    LLMSentimentClassifier,
    best_effort,
    build_sentiment_classifier,
)

__all__ = [
    "LLMSentimentClassifier",
    "LexicalSentimentClassifier",
    "MentionAnalysis",
    "best_effort",
    "build_sentiment_classifier",
    "create_brand_pattern",
    "detect_brand_mention",
]
