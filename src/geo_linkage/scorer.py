from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Set

from rapidfuzz.distance import Levenshtein

from .normalize import tokens


@dataclass(frozen=True)
class SimilarityBreakdown:
    score: float
    components: Dict[str, float]
    weights: Dict[str, float]


TEXT_WEIGHTS = {
    "edit": 0.4,
    "tokens": 0.4,
    "bigrams": 0.2,
}

GEO_TEXT_WEIGHTS = {
    "text": 0.6,
    "distance": 0.4,
}

DEFAULT_DISTANCE_SCALE_M = 300.0


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def _jaccard(left: Set[str], right: Set[str]) -> float:
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def char_bigrams(text: str) -> Set[str]:
    """Distinct adjacent character pairs; empty for strings shorter than two."""
    return {text[idx : idx + 2] for idx in range(len(text) - 1)}


def edit_similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return 1.0 - Levenshtein.distance(a, b) / max(len(a), len(b))


def jaccard_tokens(a: str, b: str) -> float:
    return _jaccard(set(tokens(a)), set(tokens(b)))


def jaccard_bigrams(a: str, b: str) -> float:
    return _jaccard(char_bigrams(a), char_bigrams(b))


def score_texts(a: str, b: str) -> SimilarityBreakdown:
    """Blend edit, token and bigram similarity of two normalized strings."""

    weights = dict(TEXT_WEIGHTS)
    if not a or not b:
        return SimilarityBreakdown(
            score=0.0,
            components={"edit": 0.0, "tokens": 0.0, "bigrams": 0.0},
            weights=weights,
        )

    components = {
        "edit": edit_similarity(a, b),
        "tokens": jaccard_tokens(a, b),
        "bigrams": jaccard_bigrams(a, b),
    }
    score = sum(weights[name] * value for name, value in components.items())
    return SimilarityBreakdown(score=_clamp(score), components=components, weights=weights)


def composite_text_similarity(a: str, b: str) -> float:
    return score_texts(a, b).score


def geo_text_score(
    text_similarity: float,
    distance_meters: float,
    distance_scale: float = DEFAULT_DISTANCE_SCALE_M,
    weights: Dict[str, float] = GEO_TEXT_WEIGHTS,
) -> float:
    """Ranking score shared by every resolution stage."""
    distance_score = 1.0 - min(distance_meters / distance_scale, 1.0)
    return _clamp(weights["text"] * text_similarity + weights["distance"] * distance_score)
