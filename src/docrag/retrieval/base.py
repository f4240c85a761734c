"""Abstract base class for document-store backends.

The ingestion coordinator and retrieval engine only need the handful of
operations below. A backend signals a transient outage by raising
:class:`~docrag.errors.StoreUnavailableError`; the circuit breaker
retries those and counts them. Any other exception is treated as a bug
and propagates untouched.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docrag.retrieval.models import Document, DocumentChunk


class DocumentStoreBase(ABC):
    """Backend-agnostic persistence interface for documents and chunks."""

    # -- documents ------------------------------------------------------------

    @abstractmethod
    async def save_document(self, document: Document) -> Document:
        """Insert *document* and return the stored record."""
        ...

    @abstractmethod
    async def get_document(self, document_id: str) -> Document | None:
        ...

    @abstractmethod
    async def find_documents_by_owner(self, owner_id: str) -> list[Document]:
        """Return the owner's documents, oldest first."""
        ...

    @abstractmethod
    async def find_documents_by_owner_and_name(self, owner_id: str, filename: str) -> list[Document]:
        ...

    @abstractmethod
    async def delete_document(self, document_id: str) -> None:
        """Delete the document record only. Chunks are removed separately."""
        ...

    # -- chunks ---------------------------------------------------------------

    @abstractmethod
    async def save_chunks(self, chunks: list[DocumentChunk]) -> list[DocumentChunk]:
        """Insert or replace *chunks* (matched by ``id``) and return them."""
        ...

    @abstractmethod
    async def update_chunk_embeddings(self, chunks: list[DocumentChunk]) -> list[DocumentChunk]:
        """Replace the embeddings of chunks that are still stored.

        Chunks whose ``id`` is no longer present are skipped, never
        re-inserted. Returns the chunks that were updated.
        """
        ...

    async def save_chunk(self, chunk: DocumentChunk) -> DocumentChunk:
        saved = await self.save_chunks([chunk])
        return saved[0]

    @abstractmethod
    async def find_chunks_by_owner(self, owner_id: str) -> list[DocumentChunk]:
        """Return the owner's chunks ordered by filename, then chunk number.

        Chunks whose document no longer exists are left out.
        """
        ...

    @abstractmethod
    async def find_chunks_by_document(self, document_id: str) -> list[DocumentChunk]:
        """Return the document's chunks ordered by chunk number."""
        ...

    @abstractmethod
    async def delete_chunks_by_document(self, document_id: str) -> None:
        ...

    # -- optional overrides ---------------------------------------------------

    async def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        return True
