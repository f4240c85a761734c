"""Ingestion coordinator — upload bytes in, stored and embedded chunks out.

One call to :meth:`IngestionCoordinator.ingest` walks a single upload
through these stages::

    RECEIVED → VALIDATED → EXTRACTED → SUPERSEDED → DOCUMENT_SAVED
             → CHUNKS_SAVED → EMBEDDED → SAVED

and ends in ``SAVED`` or raises (``FAILED``). Stage order matters for
re-uploads: chunks of the previous version are deleted, then its
document, then the new document is created, then its chunks. A crash in
between can at worst leave orphaned chunks of a deleted document or a
new document with no chunks yet, and store reads skip chunks whose
document is gone. An upload whose document is replaced by a concurrent
upload of the same name notices before each batch and before each
embedding write-back, drops what it stored and raises
:class:`~docrag.errors.DocumentSupersededError`.

Embedding failures never fail an upload. A chunk whose embedding could
not be created is stored without a vector and stays reachable through
keyword retrieval only.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import weakref
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from docrag.config import settings
from docrag.errors import (
    DocumentNotFoundError,
    DocumentSupersededError,
    ServiceUnavailableError,
    StoreUnavailableError,
    ValidationError,
)
from docrag.ingestion.chunker import TextChunk, chunk_for_file
from docrag.ingestion.embedder import Embedder
from docrag.ingestion.loader import FileKind, extract_text, file_kind
from docrag.ingestion.normalizer import normalize
from docrag.resilience import CircuitBreaker, RetryPolicy
from docrag.retrieval.base import DocumentStoreBase
from docrag.retrieval.models import Document, DocumentChunk

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IngestionState(str, enum.Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    EXTRACTED = "extracted"
    SUPERSEDED = "superseded"
    DOCUMENT_SAVED = "document_saved"
    CHUNKS_SAVED = "chunks_saved"
    EMBEDDED = "embedded"
    SAVED = "saved"
    FAILED = "failed"


@dataclass(frozen=True)
class BatchPolicy:
    """How many chunks to persist and embed at once, and the pause between batches."""

    batch_size: int
    pause_seconds: float


DEFAULT_BATCH_POLICIES: dict[FileKind, BatchPolicy] = {
    FileKind.PDF: BatchPolicy(batch_size=10, pause_seconds=0.3),
    FileKind.SPREADSHEET: BatchPolicy(batch_size=5, pause_seconds=0.4),
    FileKind.PRESENTATION: BatchPolicy(batch_size=5, pause_seconds=0.5),
}


@dataclass
class IngestionResult:
    """Outcome of one upload.

    Attributes
    ----------
    owner_id:
        Uploading user.
    filename:
        Upload name.
    state:
        Last stage reached; ``SAVED`` once :meth:`IngestionCoordinator.ingest`
        returns.
    document:
        The stored document (``None`` until ``DOCUMENT_SAVED``).
    chunk_count:
        Chunks persisted for the document.
    embedded_count:
        Chunks that received an embedding.
    superseded_ids:
        Ids of earlier documents with the same name that were deleted.
    """

    owner_id: str
    filename: str
    state: IngestionState = IngestionState.RECEIVED
    document: Document | None = None
    chunk_count: int = 0
    embedded_count: int = 0
    superseded_ids: list[str] = field(default_factory=list)

    def advance(self, state: IngestionState) -> None:
        logger.debug("%s: %s -> %s", self.filename, self.state.value, state.value)
        self.state = state


def _mask(owner_id: str) -> str:
    return owner_id[:8] + "***"


def _opening_words(text: str, max_words: int) -> str:
    words = text.split()
    if len(words) <= max_words:
        return " ".join(words)
    return " ".join(words[:max_words]) + " [...]"


class IngestionCoordinator:
    """Drive uploads through extraction, chunking, persistence and embedding.

    Parameters
    ----------
    store:
        Document store backend.
    embedder:
        Embedding gateway (or any object with an async ``embed``).
    breaker:
        Shared circuit breaker guarding every store call. A private one is
        created when omitted.
    extractors:
        Extension → extractor override, forwarded to
        :func:`~docrag.ingestion.loader.extract_text`.
    chunk_size, chunk_overlap:
        Windowed-chunking parameters.
    embed_concurrency:
        Maximum embedding calls in flight per batch.
    batch_policies:
        Per-file-kind batch size and inter-batch pause.
    pipeline_retry:
        Whole-pipeline retry on :class:`StoreUnavailableError`. Defaults to
        ``settings.pipeline_max_attempts`` attempts with a fixed backoff.
    serialize_same_name:
        Hold a lock per ``(owner, filename)`` for the whole pipeline so
        concurrent uploads of the same name cannot interleave.
    """

    def __init__(
        self,
        store: DocumentStoreBase,
        embedder: Embedder,
        breaker: CircuitBreaker | None = None,
        *,
        extractors: dict[str, Callable[[bytes], str]] | None = None,
        chunk_size: int = settings.chunk_size,
        chunk_overlap: int = settings.chunk_overlap,
        embed_concurrency: int = settings.embed_concurrency,
        batch_policies: dict[FileKind, BatchPolicy] | None = None,
        pipeline_retry: RetryPolicy | None = None,
        serialize_same_name: bool = settings.serialize_same_name_uploads,
    ) -> None:
        if embed_concurrency < 1:
            raise ValueError(f"embed_concurrency must be >= 1, got {embed_concurrency}")
        self._store = store
        self._embedder = embedder
        self._breaker = breaker or CircuitBreaker()
        self._extractors = extractors
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.embed_concurrency = embed_concurrency
        self.batch_policies = batch_policies or DEFAULT_BATCH_POLICIES
        self.pipeline_retry = pipeline_retry or RetryPolicy(
            max_retries=settings.pipeline_max_attempts - 1,
            backoff=settings.pipeline_backoff,
            multiplier=1.0,
            retry_on=(StoreUnavailableError,),
        )
        self.serialize_same_name = serialize_same_name
        self._name_locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._background: set[asyncio.Task[IngestionResult]] = set()

    # -- public API -----------------------------------------------------------

    async def ingest(self, owner_id: str, filename: str, data: bytes) -> IngestionResult:
        """Ingest one upload and return its result.

        Raises
        ------
        ValidationError
            Unsupported file type, empty upload, or no extractable text.
        ExtractionError
            The file could not be read.
        CircuitOpenError
            The store circuit is open.
        ServiceUnavailableError
            The store stayed unavailable through every pipeline attempt.
        DocumentSupersededError
            A concurrent upload of the same name replaced this one.
        """
        result = IngestionResult(owner_id=owner_id, filename=filename)
        logger.info("Ingesting %s for user %s (%d bytes)", filename, _mask(owner_id), len(data))
        try:
            kind = file_kind(filename)
            if not data:
                raise ValidationError("Uploaded file is empty")
            result.advance(IngestionState.VALIDATED)

            raw_text = await extract_text(filename, data, self._extractors)
            text = normalize(raw_text)
            logger.info("Text cleaned: %d -> %d characters", len(raw_text), len(text))
            if not text:
                raise ValidationError(f"No extractable text in {filename}")
            result.advance(IngestionState.EXTRACTED)

            try:
                await self.pipeline_retry.run(
                    lambda: self._store_document(result, kind, text),
                    label=f"ingestion of {filename}",
                )
            except StoreUnavailableError as exc:
                raise ServiceUnavailableError(
                    "Document store is temporarily unavailable, please try again later"
                ) from exc
        except Exception:
            logger.error("Ingestion of %s failed in state %s", filename, result.state.value)
            result.advance(IngestionState.FAILED)
            raise

        result.advance(IngestionState.SAVED)
        logger.info(
            "Saved %s: %d chunks, %d embedded, %d superseded",
            filename,
            result.chunk_count,
            result.embedded_count,
            len(result.superseded_ids),
        )
        return result

    def schedule(self, owner_id: str, filename: str, data: bytes) -> asyncio.Task[IngestionResult]:
        """Start :meth:`ingest` as a background task.

        The task keeps a strong reference here, so it runs to completion
        even if the caller that scheduled it is cancelled. Await it under
        :func:`asyncio.shield` to get the result without tying its
        lifetime to the caller.
        """
        task = asyncio.create_task(self.ingest(owner_id, filename, data), name=f"ingest:{filename}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def delete_document(self, owner_id: str, document_id: str) -> None:
        """Delete a document and its chunks, chunks first.

        Raises
        ------
        DocumentNotFoundError
            No such document, or it belongs to another owner.
        """
        document = await self._store_call(lambda: self._store.get_document(document_id), "get document")
        if document is None or document.owner_id != owner_id:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        await self._delete_with_chunks(document_id)
        logger.info("Deleted document %s for user %s", document_id, _mask(owner_id))

    async def list_documents(self, owner_id: str) -> list[Document]:
        return await self._store_call(lambda: self._store.find_documents_by_owner(owner_id), "list documents")

    async def document_texts(self, owner_id: str, max_words: int = 50) -> list[tuple[str, str]]:
        """Return ``(filename, opening words)`` for each of the owner's documents.

        Text longer than *max_words* words is cut and marked with ``[...]``.
        """
        documents = await self.list_documents(owner_id)
        return [(d.filename, _opening_words(d.content, max_words)) for d in documents]

    async def count_chunks(self, document_id: str) -> int:
        chunks = await self._store_call(
            lambda: self._store.find_chunks_by_document(document_id), "find chunks by document"
        )
        return len(chunks)

    # -- stages ---------------------------------------------------------------

    async def _store_document(self, result: IngestionResult, kind: FileKind, text: str) -> None:
        lock: contextlib.AbstractAsyncContextManager = (
            self._name_lock(result.owner_id, result.filename)
            if self.serialize_same_name
            else contextlib.nullcontext()
        )
        async with lock:
            own_attempt = result.document.id if result.document else None
            for document_id in await self._supersede(result.owner_id, result.filename):
                if document_id != own_attempt and document_id not in result.superseded_ids:
                    result.superseded_ids.append(document_id)
            result.advance(IngestionState.SUPERSEDED)

            document = Document(owner_id=result.owner_id, filename=result.filename, content=text)
            result.document = await self._store_call(lambda: self._store.save_document(document), "save document")
            result.advance(IngestionState.DOCUMENT_SAVED)

            chunks = chunk_for_file(text, result.filename, chunk_size=self.chunk_size, overlap=self.chunk_overlap)
            logger.info("Chunking %s into %d %s chunks", result.filename, len(chunks), kind.value)
            result.chunk_count, result.embedded_count = await self._save_and_embed(
                result, chunks, self.batch_policies[kind]
            )
            result.advance(IngestionState.EMBEDDED)

    async def _supersede(self, owner_id: str, filename: str) -> list[str]:
        existing = await self._store_call(
            lambda: self._store.find_documents_by_owner_and_name(owner_id, filename),
            "find existing documents",
        )
        for old in existing:
            await self._delete_with_chunks(old.id)
            logger.info("Superseded document %s (%s)", old.id, filename)
        return [old.id for old in existing]

    async def _delete_with_chunks(self, document_id: str) -> None:
        await self._store_call(lambda: self._store.delete_chunks_by_document(document_id), "delete chunks")
        await self._store_call(lambda: self._store.delete_document(document_id), "delete document")

    async def _save_and_embed(
        self, result: IngestionResult, chunks: list[TextChunk], policy: BatchPolicy
    ) -> tuple[int, int]:
        """Persist *chunks* in batches and attach embeddings batch by batch.

        Returns ``(chunks saved, chunks embedded)``.
        """
        document = result.document
        records = [
            DocumentChunk(
                document_id=document.id,
                owner_id=document.owner_id,
                filename=document.filename,
                content=c.content,
                chunk_number=c.number,
                start_index=c.start,
                end_index=c.end,
            )
            for c in chunks
        ]
        semaphore = asyncio.Semaphore(self.embed_concurrency)
        saved = embedded = 0

        for offset in range(0, len(records), policy.batch_size):
            if offset:
                await asyncio.sleep(policy.pause_seconds)
            await self._ensure_live(document)
            batch = records[offset : offset + policy.batch_size]
            batch = await self._store_call(lambda: self._store.save_chunks(batch), "save chunks")
            saved += len(batch)
            if result.state is IngestionState.DOCUMENT_SAVED:
                result.advance(IngestionState.CHUNKS_SAVED)

            vectors = await asyncio.gather(*(self._embed_chunk(chunk, semaphore) for chunk in batch))
            with_vectors = [chunk.with_embedding(v) for chunk, v in zip(batch, vectors) if v]
            if with_vectors:
                updated = await self._store_call(
                    lambda: self._store.update_chunk_embeddings(with_vectors), "save embeddings"
                )
                if len(updated) < len(with_vectors):
                    await self._abandon(document)
            embedded += len(with_vectors)
            logger.debug(
                "Batch of %d chunks saved for %s, %d embedded",
                len(batch),
                document.filename,
                len(with_vectors),
            )

        await self._ensure_live(document)
        if embedded < saved:
            logger.warning(
                "%d of %d chunks of %s have no embedding and are keyword-searchable only",
                saved - embedded,
                saved,
                document.filename,
            )
        return saved, embedded

    async def _ensure_live(self, document: Document) -> None:
        current = await self._store_call(lambda: self._store.get_document(document.id), "get document")
        if current is None:
            await self._abandon(document)

    async def _abandon(self, document: Document) -> None:
        """Drop what this upload stored after a newer upload replaced it."""
        await self._store_call(lambda: self._store.delete_chunks_by_document(document.id), "delete chunks")
        logger.warning("Document %s (%s) was superseded while ingesting", document.id, document.filename)
        raise DocumentSupersededError(
            f"{document.filename} was replaced by a newer upload while it was being processed"
        )

    async def _embed_chunk(self, chunk: DocumentChunk, semaphore: asyncio.Semaphore) -> list[float] | None:
        async with semaphore:
            try:
                vector = await self._embedder.embed(chunk.content)
            except Exception as exc:
                logger.warning("Embedding failed for chunk %d: %s", chunk.chunk_number, exc)
                return None
        if not vector:
            logger.warning("No embedding for chunk %d of %s", chunk.chunk_number, chunk.filename)
            return None
        return vector

    # -- helpers --------------------------------------------------------------

    async def _store_call(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        return await self._breaker.call(operation, label=label)

    def _name_lock(self, owner_id: str, filename: str) -> asyncio.Lock:
        key = (owner_id, filename)
        lock = self._name_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._name_locks[key] = lock
        return lock
