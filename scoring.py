"""
Engine-independent result quality scores.

relevance_score: term overlap with whole-word and title bonuses, weighted
by position 1/(p+1) and by the share of query terms a row covers,
normalized to 0-100 against resultCount * termCount * 5.

ndcg_score: graded relevance per row (title 3, brand 2, description 1,
normalized by termCount * 6), DCG over the top K divided by the DCG of
the ideal ordering, scaled to 0-100.

Both are pure functions. Matching is literal: no stemming, no fuzzy
correction.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from config import NDCG_K

Row = Mapping[str, Any]

WHOLE_WORD_POINTS = 2
SUBSTRING_POINTS = 1
TITLE_BONUS = 3
PER_TERM_MAX = WHOLE_WORD_POINTS + TITLE_BONUS

NDCG_WEIGHTS = {"title": 3, "brand": 2, "description": 1}
NDCG_NORMALIZER = sum(NDCG_WEIGHTS.values())

_FIELD_PREFIX = re.compile(r"\b\w+:")
_PUNCTUATION = re.compile(r"[^\w\s]")


def tokenize(query: Optional[str]) -> List[str]:
    """Lowercase terms with field prefixes ('title:x' -> 'x') and punctuation stripped."""
    if not query:
        return []
    text = _FIELD_PREFIX.sub(" ", query.lower())
    text = _PUNCTUATION.sub(" ", text)
    return text.split()


def _field(row: Row, name: str) -> str:
    value = row.get(name)
    return str(value).lower() if value is not None else ""


def _haystack(row: Row) -> str:
    return " ".join(_field(row, name) for name in ("title", "description", "brand"))


def _whole_word(term: str, text: str) -> bool:
    return re.search(r"\b" + re.escape(term) + r"\b", text) is not None


@dataclass(frozen=True)
class RowRelevance:
    position: int
    match_score: int
    title_bonus: int
    term_coverage: float
    position_weight: float

    @property
    def score(self) -> float:
        return (self.match_score + self.title_bonus) * self.term_coverage * self.position_weight


def score_row(row: Row, terms: Sequence[str], position: int) -> RowRelevance:
    text = _haystack(row)
    title = _field(row, "title")

    match_score = 0
    title_bonus = 0
    matched = 0
    for term in terms:
        if term in text:
            matched += 1
            match_score += WHOLE_WORD_POINTS if _whole_word(term, text) else SUBSTRING_POINTS
        if term in title:
            title_bonus += TITLE_BONUS

    coverage = matched / len(terms) if terms else 0.0
    return RowRelevance(
        position=position,
        match_score=match_score,
        title_bonus=title_bonus,
        term_coverage=coverage,
        position_weight=1.0 / (position + 1),
    )


def relevance_breakdown(results: Optional[Sequence[Row]], query: str) -> List[RowRelevance]:
    terms = tokenize(query)
    if not results or not terms:
        return []
    return [score_row(row, terms, position) for position, row in enumerate(results)]


def relevance_score(results: Optional[Sequence[Row]], query: str) -> float:
    """Term-overlap relevance on a 0-100 scale; 0 for empty results."""
    terms = tokenize(query)
    if not results or not terms:
        return 0.0

    total = sum(r.score for r in relevance_breakdown(results, query))
    max_possible = len(results) * len(terms) * PER_TERM_MAX
    return min(100.0, total / max_possible * 100)


def graded_relevance(row: Row, terms: Sequence[str]) -> float:
    """Relevance of one row in [0, 1]."""
    if not terms:
        return 0.0
    fields = {name: _field(row, name) for name in NDCG_WEIGHTS}
    score = 0
    for term in terms:
        for name, weight in NDCG_WEIGHTS.items():
            if term in fields[name]:
                score += weight
    return score / (len(terms) * NDCG_NORMALIZER)


def dcg(relevances: Sequence[float]) -> float:
    gains = np.power(2.0, np.asarray(relevances, dtype=float)) - 1.0
    if gains.size == 0:
        return 0.0
    discounts = np.log2(np.arange(2, gains.size + 2))
    return float(np.sum(gains / discounts))


def ndcg_score(results: Optional[Sequence[Row]], query: str, k: int = NDCG_K) -> float:
    """NDCG@k on a 0-100 scale; 0 when nothing in the top k is relevant."""
    terms = tokenize(query)
    if not results or not terms:
        return 0.0

    relevances = [graded_relevance(row, terms) for row in list(results)[:k]]
    ideal = dcg(sorted(relevances, reverse=True))
    if ideal == 0:
        return 0.0
    return min(100.0, dcg(relevances) / ideal * 100)


def score_results(results: Optional[Sequence[Row]], query: str) -> Dict[str, float]:
    return {
        "relevance": relevance_score(results, query),
        "ndcg": ndcg_score(results, query),
    }
