"""
Brand mention analysis for provider answers.

Decides whether an answer mentions the target brand, where the first
mention appears, and which competitors are named alongside it.

Key features:
- Case-insensitive matching of the brand name or any configured keyword
- 1-based paragraph position of the first mention
- Independent True/False entry for every competitor
- Three matching modes:
    substring      plain containment ("Acme" matches "AcmeCloud")
    word_boundary  whole-word regex ("hub" does not match "GitHub")
    fuzzy          word-boundary plus rapidfuzz similarity for typos

Security:
- Always uses re.escape() to prevent regex injection

Example:
    >>> analysis = detect_brand_mention(
    ...     "Top picks:\\n\\n1. Globex\\n2. Acme Cloud",
    ...     brand_name="Acme",
    ...     competitors=["Globex", "Initech"],
    ... )
    >>> analysis.brand_mentioned, analysis.mention_position
    (True, 3)
    >>> analysis.competitors_mentioned
    {'Globex': True, 'Initech': False}
"""

import re
from dataclasses import dataclass, field
from typing import Literal

from rapidfuzz import fuzz

MatchMode = Literal["substring", "word_boundary", "fuzzy"]

# Paragraphs are separated by blank lines; numbered list items also start a
# new paragraph even when only a single newline precedes them.
PARAGRAPH_SPLIT_PATTERN = re.compile(r"\n\n|\n(?=\d+\.)")

_WORD_PATTERN = re.compile(r"\b\w[\w.'-]*\b")


@dataclass
class MentionAnalysis:
    """
    Result of scanning one answer for the brand and its competitors.

    Attributes:
        brand_mentioned: True if the brand name or any keyword matched
        mention_position: 1-based paragraph index of the first match, None
            when the brand is not mentioned
        matched_terms: Brand name/keywords that matched, in config order
        competitors_mentioned: Competitor name -> mentioned flag
    """

    brand_mentioned: bool
    mention_position: int | None = None
    matched_terms: list[str] = field(default_factory=list)
    competitors_mentioned: dict[str, bool] = field(default_factory=dict)


def create_brand_pattern(term: str) -> re.Pattern:
    """
    Create a case-insensitive word-boundary regex for a brand term.

    Args:
        term: Brand name, keyword or competitor (e.g. "Acme", "Acme.io")

    Returns:
        Compiled pattern

    Raises:
        ValueError: If term is empty

    Example:
        >>> bool(create_brand_pattern("Hub").search("I use GitHub"))
        False
    """
    if not term or term.isspace():
        raise ValueError("Brand term cannot be empty or whitespace")

    escaped = re.escape(term.strip())
    # \b only works next to word characters; fall back to lookarounds for
    # terms that start or end with punctuation (e.g. "C++").
    prefix = r"\b" if re.match(r"\w", term.strip()) else r"(?<!\w)"
    suffix = r"\b" if re.search(r"\w$", term.strip()) else r"(?!\w)"
    return re.compile(prefix + escaped + suffix, re.IGNORECASE)


def split_paragraphs(text: str) -> list[str]:
    """Split an answer into paragraphs (blank lines and numbered items)."""
    return PARAGRAPH_SPLIT_PATTERN.split(text)


def _fuzzy_contains(text: str, term: str, threshold: int) -> bool:
    """Compare the term against every word window of the same length."""
    words = _WORD_PATTERN.findall(text)
    width = max(1, len(term.split()))
    target = term.lower()
    for start in range(0, max(0, len(words) - width + 1)):
        candidate = " ".join(words[start : start + width]).lower()
        if fuzz.ratio(candidate, target) >= threshold:
            return True
    return False


def term_in_text(
    text: str,
    term: str,
    match_mode: MatchMode = "substring",
    fuzzy_threshold: int = 85,
) -> bool:
    """
    Check whether ``term`` occurs in ``text`` under the given match mode.

    Args:
        text: Text to search
        term: Brand name, keyword or competitor
        match_mode: "substring", "word_boundary" or "fuzzy"
        fuzzy_threshold: Minimum rapidfuzz ratio (0-100) for fuzzy mode

    Returns:
        True if the term matches
    """
    if not term or term.isspace() or not text:
        return False

    if match_mode == "substring":
        return term.strip().lower() in text.lower()

    if create_brand_pattern(term).search(text):
        return True

    if match_mode == "fuzzy":
        return _fuzzy_contains(text, term, fuzzy_threshold)

    return False


def find_mention_position(
    text: str,
    terms: list[str],
    match_mode: MatchMode = "substring",
    fuzzy_threshold: int = 85,
) -> int | None:
    """
    Return the 1-based index of the first paragraph containing any term.

    Example:
        >>> find_mention_position("Intro\\n\\nAcme is good", ["acme"])
        2
    """
    for index, paragraph in enumerate(split_paragraphs(text), start=1):
        if any(term_in_text(paragraph, t, match_mode, fuzzy_threshold) for t in terms):
            return index
    return None


def detect_brand_mention(
    text: str,
    brand_name: str,
    keywords: list[str] | None = None,
    competitors: list[str] | None = None,
    match_mode: MatchMode = "substring",
    fuzzy_threshold: int = 85,
) -> MentionAnalysis:
    """
    Analyze one provider answer for the brand and its competitors.

    Args:
        text: Raw answer text
        brand_name: Target brand name
        keywords: Extra terms that count as a brand mention
        competitors: Competitor names to flag
        match_mode: Matching strategy
        fuzzy_threshold: Similarity threshold for fuzzy mode

    Returns:
        MentionAnalysis for the answer
    """
    brand_terms = [brand_name, *(keywords or [])]
    matched_terms = [
        term
        for term in brand_terms
        if term_in_text(text, term, match_mode, fuzzy_threshold)
    ]

    brand_mentioned = bool(matched_terms)
    mention_position = (
        find_mention_position(text, matched_terms, match_mode, fuzzy_threshold)
        if brand_mentioned
        else None
    )

    competitors_mentioned = {
        competitor: term_in_text(text, competitor, match_mode, fuzzy_threshold)
        for competitor in (competitors or [])
    }

    return MentionAnalysis(
        brand_mentioned=brand_mentioned,
        mention_position=mention_position,
        matched_terms=matched_terms,
        competitors_mentioned=competitors_mentioned,
    )
