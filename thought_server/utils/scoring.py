"""Heuristic scoring for thought and draft content.

These functions back the engines when a step arrives without an explicit
confidence or category. They are deterministic word-level heuristics with no
model dependencies.
"""

from __future__ import annotations

import re

# Keyword table for thought categorization, checked as substrings
CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "analysis": ("analyze", "examine", "investigate", "study", "review"),
    "hypothesis": ("assume", "predict", "suggest", "might", "could"),
    "verification": ("verify", "test", "validate", "check", "confirm"),
    "revision": ("revise", "update", "modify", "change", "adjust"),
    "solution": ("solve", "implement", "fix", "resolve", "complete"),
}

# Words that indicate deliberate reasoning
REASONING_KEYWORDS = frozenset(
    ["analyze", "consider", "evaluate", "examine", "investigate", "determine", "conclude"]
)

WEIGHTS = {
    "structure": 0.10,
    "length": 0.10,
    "keywords": 0.15,
    "complexity": 0.15,
}

BASE_QUALITY = 0.5

_WORD_SPLIT = re.compile(r"\s+")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_TOKEN_SPLIT = re.compile(r"[\s,.!?;:]+")


def categorize_thought(content: str) -> tuple[str, float] | None:
    """Pick the category whose keywords appear most often in ``content``.

    Args:
        content: Thought text.

    Returns:
        ``(category, confidence)`` where confidence is matches per word, or
        None when no keyword matches. Ties keep the earlier category.

    """
    text = content.lower()
    best: str | None = None
    best_matches = 0
    for category, keywords in CATEGORY_KEYWORDS.items():
        matches = sum(1 for keyword in keywords if keyword in text)
        if matches > best_matches:
            best, best_matches = category, matches
    if best is None:
        return None
    words = max(len(text.split(" ")), 1)
    return best, min(1.0, best_matches / words)


def text_complexity(content: str) -> float:
    """Score average sentence length against an optimum of 15 words."""
    words = len(_WORD_SPLIT.split(content.strip())) if content.strip() else 0
    sentences = len(_SENTENCE_SPLIT.split(content))
    average = words / max(1, sentences)
    return min(1.0, max(0.0, 1 - abs(15 - average) / 15))


def content_quality(content: str) -> float:
    """Heuristic quality score in [0, 1] for a piece of reasoning text."""
    lowered = content.lower()
    score = BASE_QUALITY
    if "\n" in content or "." in content:
        score += WEIGHTS["structure"]
    if 30 < len(content) < 10000:
        score += WEIGHTS["length"]
    if any(keyword in lowered for keyword in REASONING_KEYWORDS):
        score += WEIGHTS["keywords"]
    score += text_complexity(content) * WEIGHTS["complexity"]
    return min(1.0, score)


def tokenize(content: str) -> set[str]:
    """Lower-cased word set, ignoring tokens of three characters or fewer."""
    return {token for token in _TOKEN_SPLIT.split(content.lower()) if len(token) > 3}


def jaccard_similarity(left: str, right: str) -> float:
    """Jaccard similarity of the token sets of two texts."""
    a, b = tokenize(left), tokenize(right)
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)


def revision_impact(original: str, revised: str) -> float:
    """How much a revision changed its target, as ``1 - similarity``."""
    return 1.0 - jaccard_similarity(original, revised)
