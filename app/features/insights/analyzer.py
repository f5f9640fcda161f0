"""
Rule-based query analyzer.

Classifies a raw query into intent, complexity, topics and languages with
ordered keyword rules. Pure and deterministic; no I/O.
"""

import re
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from app.shared.constants import (
    INTENT_COMPARISON,
    INTENT_EXPLANATION,
    INTENT_HOW_TO,
    INTENT_REFERENCE,
    INTENT_TROUBLESHOOTING,
    PROGRAMMING_LANGUAGES,
    STOP_WORDS,
    TECH_TOPICS,
)

# Evaluated top to bottom; first match wins. Matching is substring
# containment on the lower-cased query.
INTENT_RULES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    (INTENT_HOW_TO, ("how to", "how do i", "how can")),
    (INTENT_EXPLANATION, ("what is", "what are", "explain")),
    (INTENT_COMPARISON, ("vs", "versus", "compare", "difference between")),
    (INTENT_TROUBLESHOOTING, ("error", "not working", "fix", "debug")),
)

REFERENCE_MAX_WORDS = 3

COMPLEX_MIN_CHARS = 100
COMPLEX_MIN_WORDS = 15
MODERATE_MIN_CHARS = 50
MODERATE_MIN_WORDS = 8


@dataclass
class QueryAnalysis:
    intent: Optional[str] = None
    complexity: str = "simple"
    topics: List[str] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def classify_intent(lowered: str, word_count: int) -> Optional[str]:
    for intent, keywords in INTENT_RULES:
        if any(keyword in lowered for keyword in keywords):
            return intent
    if 0 < word_count <= REFERENCE_MAX_WORDS:
        return INTENT_REFERENCE
    return None


def classify_complexity(text: str, word_count: int) -> str:
    if len(text) > COMPLEX_MIN_CHARS or word_count > COMPLEX_MIN_WORDS:
        return "complex"
    if len(text) > MODERATE_MIN_CHARS or word_count > MODERATE_MIN_WORDS:
        return "moderate"
    return "simple"


def _vocabulary_matches(lowered: str, vocabulary: Tuple[str, ...]) -> List[str]:
    return [term for term in vocabulary if term in lowered]


def analyze_query(text: str) -> QueryAnalysis:
    """
    Analyze a query.

    Empty input gives intent None, complexity "simple" and no matches.
    """
    if not text or not text.strip():
        return QueryAnalysis()

    lowered = text.lower()
    word_count = len(text.split())

    return QueryAnalysis(
        intent=classify_intent(lowered, word_count),
        complexity=classify_complexity(text, word_count),
        topics=_vocabulary_matches(lowered, TECH_TOPICS),
        languages=_vocabulary_matches(lowered, PROGRAMMING_LANGUAGES),
    )


def extract_keywords(text: str, limit: int = 10) -> List[str]:
    """Most frequent non-stop-words longer than three characters."""
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    counts = Counter(word for word in words if len(word) > 3 and word not in STOP_WORDS)
    return [word for word, _ in counts.most_common(limit)]
