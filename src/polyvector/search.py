"""Ranking helpers shared by the vector store backends."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from polyvector.documents import Document, SearchHit
from polyvector.errors import InvalidArgumentError

_LUCENE_SPECIAL_CHARS = '+-&|!(){}[]^"~*?:\\/'
_LUCENE_OPERATORS = frozenset({"AND", "OR", "NOT"})


@dataclass(frozen=True)
class RankedCandidate:
    """One backend hit before fusion, identified by its stored id."""

    key: str
    document: Document
    score: float


def validate_k(k: int) -> None:
    if isinstance(k, bool) or not isinstance(k, int) or k <= 0:
        raise InvalidArgumentError(f"k must be a positive integer, got {k!r}")


def remove_lucene_chars(text: str) -> str:
    """Replace Lucene query operators so free text can't break the parser.

    Special characters become spaces and the boolean keywords are lowercased,
    which Lucene treats as plain terms.
    """
    for char in _LUCENE_SPECIAL_CHARS:
        text = text.replace(char, " ")
    return " ".join(
        word.lower() if word in _LUCENE_OPERATORS else word for word in text.split()
    )


def fuse_hybrid(
    vector_hits: Sequence[RankedCandidate],
    keyword_hits: Sequence[RankedCandidate],
    k: int,
) -> list[SearchHit]:
    """Merge vector and keyword rankings into one list of at most ``k`` hits.

    Ordering, most significant key first:

    1. candidates found by both queries before candidates found by one;
    2. vector rank (candidates without one sort after those with one);
    3. keyword score, descending;
    4. keyword rank, then candidate key.

    The reported score is the vector score when the candidate has one and
    the keyword score otherwise.
    """
    vector_rank: dict[str, int] = {}
    keyword_rank: dict[str, int] = {}
    candidates: dict[str, RankedCandidate] = {}
    keyword_scores: dict[str, float] = {}

    for rank, hit in enumerate(vector_hits):
        if hit.key not in vector_rank:
            vector_rank[hit.key] = rank
            candidates[hit.key] = hit
    for rank, hit in enumerate(keyword_hits):
        if hit.key not in keyword_rank:
            keyword_rank[hit.key] = rank
            keyword_scores[hit.key] = hit.score
            candidates.setdefault(hit.key, hit)

    def sort_key(key: str) -> tuple[int, float, float, float, str]:
        in_both = key in vector_rank and key in keyword_rank
        return (
            0 if in_both else 1,
            vector_rank.get(key, math.inf),
            -keyword_scores[key] if key in keyword_scores else math.inf,
            keyword_rank.get(key, math.inf),
            key,
        )

    ordered = sorted(candidates, key=sort_key)[:k]
    return [
        SearchHit(document=candidates[key].document, score=candidates[key].score)
        for key in ordered
    ]
