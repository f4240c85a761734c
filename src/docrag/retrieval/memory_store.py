"""In-process implementation of the document-store abstraction."""

from __future__ import annotations

import asyncio
import logging

from docrag.retrieval.base import DocumentStoreBase
from docrag.retrieval.models import Document, DocumentChunk

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStoreBase):
    """Dict-backed store, suitable for a single process and for tests.

    Records are immutable pydantic models, so handing out the stored
    instances is safe. Every mutation happens under one ``asyncio.Lock``.
    """

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._chunks: dict[str, DocumentChunk] = {}
        self._lock = asyncio.Lock()

    # -- documents ------------------------------------------------------------

    async def save_document(self, document: Document) -> Document:
        async with self._lock:
            self._documents[document.id] = document
        return document

    async def get_document(self, document_id: str) -> Document | None:
        return self._documents.get(document_id)

    async def find_documents_by_owner(self, owner_id: str) -> list[Document]:
        docs = [d for d in self._documents.values() if d.owner_id == owner_id]
        return sorted(docs, key=lambda d: d.created_at)

    async def find_documents_by_owner_and_name(self, owner_id: str, filename: str) -> list[Document]:
        return [
            d for d in self._documents.values() if d.owner_id == owner_id and d.filename == filename
        ]

    async def delete_document(self, document_id: str) -> None:
        async with self._lock:
            self._documents.pop(document_id, None)

    # -- chunks ---------------------------------------------------------------

    async def save_chunks(self, chunks: list[DocumentChunk]) -> list[DocumentChunk]:
        async with self._lock:
            for chunk in chunks:
                self._chunks[chunk.id] = chunk
        return list(chunks)

    async def update_chunk_embeddings(self, chunks: list[DocumentChunk]) -> list[DocumentChunk]:
        updated = []
        async with self._lock:
            for chunk in chunks:
                current = self._chunks.get(chunk.id)
                if current is None:
                    continue
                self._chunks[chunk.id] = current.model_copy(update={"embedding": chunk.embedding})
                updated.append(self._chunks[chunk.id])
        if len(updated) < len(chunks):
            logger.debug("Skipped %d embeddings for chunks no longer stored", len(chunks) - len(updated))
        return updated

    async def find_chunks_by_owner(self, owner_id: str) -> list[DocumentChunk]:
        chunks = [
            c for c in self._chunks.values() if c.owner_id == owner_id and c.document_id in self._documents
        ]
        return sorted(chunks, key=lambda c: (c.filename, c.chunk_number))

    async def find_chunks_by_document(self, document_id: str) -> list[DocumentChunk]:
        chunks = [c for c in self._chunks.values() if c.document_id == document_id]
        return sorted(chunks, key=lambda c: c.chunk_number)

    async def delete_chunks_by_document(self, document_id: str) -> None:
        async with self._lock:
            doomed = [cid for cid, c in self._chunks.items() if c.document_id == document_id]
            for cid in doomed:
                del self._chunks[cid]
        logger.debug("Deleted %d chunks of document %s", len(doomed), document_id)
