"""Retrieval engine — question in, formatted context text out.

The question is embedded and compared against every chunk the owner has
stored (a linear scan; there is no index). When the question cannot be
embedded the engine falls back to a keyword scan so the caller still
gets some material.

Usage::

    engine  = RetrievalEngine(store, gateway, breaker)
    context = await engine.retrieve("What was Q3 revenue?", owner_id)
    if is_sentinel(context):
        ...  # nothing relevant, answer without documents
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from docrag.config import settings
from docrag.errors import ServiceUnavailableError, StoreUnavailableError, ValidationError
from docrag.ingestion.embedder import Embedder
from docrag.resilience import CircuitBreaker
from docrag.retrieval.base import DocumentStoreBase
from docrag.retrieval.models import DocumentChunk, ScoredChunk
from docrag.retrieval.similarity import rank, top_k

logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_DOCUMENTS = "No document was found for the user"
NO_CHUNKS = "No chunks with embeddings were found"
KEYWORD_FALLBACK_HEADER = "(No specific matches were found, showing the first parts)"

SENTINELS = (NO_DOCUMENTS, NO_CHUNKS)

# Keyword tokens must be longer than this to count.
MIN_KEYWORD_LENGTH = 3


def is_sentinel(context: str | None) -> bool:
    """Return ``True`` when *context* means "no relevant material"."""
    return not context or context.strip() in SENTINELS


def keywords(question: str) -> list[str]:
    """Lowercased whitespace tokens of *question* longer than three characters."""
    return [token for token in question.lower().split() if len(token) > MIN_KEYWORD_LENGTH]


def format_chunk(chunk: DocumentChunk, similarity: float | None = None) -> str:
    if similarity is None:
        header = f"--- Chunk {chunk.chunk_number} from {chunk.filename} ---"
    else:
        header = f"--- Chunk {chunk.chunk_number} (relevance: {similarity:.3f}) from {chunk.filename} ---"
    return f"{header}\n{chunk.content}\n\n"


class RetrievalEngine:
    """Rank an owner's chunks against a question.

    Parameters
    ----------
    store:
        Document store backend.
    embedder:
        Used to embed the question.
    breaker:
        Shared circuit breaker guarding store calls.
    top_k:
        Number of chunks returned by embedding-based retrieval.
    keyword_max_results:
        Cap on chunks returned by keyword retrieval.
    keyword_fallback_chunks:
        Chunks shown when keyword retrieval matches nothing.
    """

    def __init__(
        self,
        store: DocumentStoreBase,
        embedder: Embedder,
        breaker: CircuitBreaker | None = None,
        *,
        top_k: int = settings.retrieval_top_k,
        keyword_max_results: int = settings.keyword_max_results,
        keyword_fallback_chunks: int = settings.keyword_fallback_chunks,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._breaker = breaker or CircuitBreaker()
        self.top_k = top_k
        self.keyword_max_results = keyword_max_results
        self.keyword_fallback_chunks = keyword_fallback_chunks

    # -- public API -----------------------------------------------------------

    async def retrieve(self, question: str, owner_id: str) -> str:
        """Return the context for *question* drawn from *owner_id*'s chunks.

        Raises
        ------
        ValidationError
            *question* is blank.
        ServiceUnavailableError
            The store could not be read (``CircuitOpenError`` when the
            circuit is open).
        """
        self._validate(question)
        logger.info("Searching with embeddings for question: %s", _truncate(question))

        query_embedding = await self._embedder.embed(question)
        if not query_embedding:
            logger.warning("No embedding for question, falling back to keyword search")
            return await self.retrieve_by_keywords(question, owner_id)

        chunks = await self._owner_chunks(owner_id)
        if not chunks:
            logger.info("No chunks found for user %s", owner_id[:8] + "***")
            return NO_DOCUMENTS

        scored = rank(query_embedding, chunks)
        if not scored:
            return NO_CHUNKS

        best = top_k(scored, self.top_k)
        for position, hit in enumerate(best, 1):
            logger.info("#%d: %s - similarity: %.4f", position, hit.chunk.filename, hit.similarity)

        parts = [f"Searched with embeddings - found {len(scored)} chunks with embeddings\n\n"]
        parts.extend(format_chunk(hit.chunk, hit.similarity) for hit in best)
        return "".join(parts)

    async def search(self, question: str, owner_id: str, k: int | None = None) -> list[ScoredChunk]:
        """Ranked chunks for *question*, best first.

        Returns an empty list when the question cannot be embedded; there
        is no keyword fallback in this form.
        """
        self._validate(question)
        query_embedding = await self._embedder.embed(question)
        if not query_embedding:
            return []
        chunks = await self._owner_chunks(owner_id)
        return top_k(rank(query_embedding, chunks), k or self.top_k)

    async def retrieve_by_keywords(self, question: str, owner_id: str) -> str:
        """Keyword retrieval over the owner's chunks in storage order.

        Collects up to ``keyword_max_results`` chunks containing any token
        of the question longer than three characters. With no match, the
        first ``keyword_fallback_chunks`` chunks are returned under a
        header saying so.
        """
        chunks = await self._owner_chunks(owner_id)
        if not chunks:
            return NO_DOCUMENTS

        tokens = keywords(question)
        matches: list[DocumentChunk] = []
        for chunk in chunks:
            if len(matches) >= self.keyword_max_results:
                break
            content = chunk.content.lower()
            if any(token in content for token in tokens):
                matches.append(chunk)

        if matches:
            return "".join(format_chunk(chunk) for chunk in matches)

        logger.info("No keyword matches, returning the first %d chunks", self.keyword_fallback_chunks)
        parts = [KEYWORD_FALLBACK_HEADER + "\n\n"]
        parts.extend(format_chunk(chunk) for chunk in chunks[: self.keyword_fallback_chunks])
        return "".join(parts)

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _validate(question: str) -> None:
        if question is None or not question.strip():
            raise ValidationError("Question cannot be empty")

    async def _owner_chunks(self, owner_id: str) -> list[DocumentChunk]:
        return await self._store_call(lambda: self._store.find_chunks_by_owner(owner_id), "find chunks by owner")

    async def _store_call(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        try:
            return await self._breaker.call(operation, label=label)
        except StoreUnavailableError as exc:
            raise ServiceUnavailableError("Document store is temporarily unavailable") from exc


def _truncate(question: str, limit: int = 100) -> str:
    return question if len(question) <= limit else question[:limit] + "..."
