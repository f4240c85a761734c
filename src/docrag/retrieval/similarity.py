"""Cosine similarity and ranking over in-memory chunk lists."""

from __future__ import annotations

import math
from typing import Sequence

from docrag.retrieval.models import DocumentChunk, ScoredChunk


def cosine(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """Return the cosine similarity of *a* and *b* in ``[-1, 1]``.

    Returns ``0.0`` instead of raising when either vector is missing or
    empty, the lengths differ, or either norm is zero.
    """
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = norm_a = norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    # Floating-point error can push |score| a hair past 1.
    return max(-1.0, min(1.0, score))


def rank(query_embedding: Sequence[float], chunks: Sequence[DocumentChunk]) -> list[ScoredChunk]:
    """Score every chunk that has an embedding, best first.

    Chunks without an embedding are left out. Equal scores keep their
    input order.
    """
    scored = [
        ScoredChunk(chunk=chunk, similarity=cosine(query_embedding, chunk.embedding))
        for chunk in chunks
        if chunk.has_embedding
    ]
    scored.sort(key=lambda s: s.similarity, reverse=True)
    return scored


def top_k(scored: Sequence[ScoredChunk], k: int) -> list[ScoredChunk]:
    return list(scored[: max(k, 0)])
