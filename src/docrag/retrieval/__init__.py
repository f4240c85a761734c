"""
Retrieval — document storage, cosine ranking, and context assembly.

Retrieval is a linear scan over the owner's chunks; the store only has
to return them, not search them.

Public surface
--------------
- :class:`RetrievalEngine` — main entry point, question → context text.
- :class:`DocumentStoreBase` — abstract backend.
- :class:`InMemoryDocumentStore` — default in-process backend.
- :class:`Document`, :class:`DocumentChunk`, :class:`ScoredChunk` — data models.
- :func:`cosine`, :func:`rank` — similarity scoring.
"""

from docrag.retrieval.base import DocumentStoreBase
from docrag.retrieval.memory_store import InMemoryDocumentStore
from docrag.retrieval.models import Document, DocumentChunk, ScoredChunk
from docrag.retrieval.retriever import NO_CHUNKS, NO_DOCUMENTS, RetrievalEngine, is_sentinel
from docrag.retrieval.similarity import cosine, rank

__all__ = [
    "NO_CHUNKS",
    "NO_DOCUMENTS",
    "Document",
    "DocumentChunk",
    "DocumentStoreBase",
    "InMemoryDocumentStore",
    "RetrievalEngine",
    "ScoredChunk",
    "cosine",
    "is_sentinel",
    "rank",
]
