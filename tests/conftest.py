"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import pytest

from docrag.errors import StoreUnavailableError
from docrag.ingestion.coordinator import BatchPolicy, IngestionCoordinator
from docrag.ingestion.loader import FileKind
from docrag.resilience import CircuitBreaker, RetryPolicy
from docrag.retrieval.memory_store import InMemoryDocumentStore
from docrag.retrieval.retriever import RetrievalEngine

# Each fake vector has one dimension per word below, counting occurrences.
VOCABULARY = ("revenue", "profit", "hiring", "office", "weather")


def bag_of_words(text: str) -> list[float]:
    lowered = text.lower()
    return [float(lowered.count(word)) for word in VOCABULARY]


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fakes ───────────────────────────────────────────────────────────────


class FakeEmbeddingGateway:
    """Deterministic embedder: a bag-of-words vector over :data:`VOCABULARY`.

    Texts containing any string in *fail_on* get ``None``; texts
    containing any string in *raise_on* raise ``RuntimeError``.
    """

    def __init__(self, fail_on: tuple[str, ...] = (), raise_on: tuple[str, ...] = (), disabled: bool = False) -> None:
        self.fail_on = fail_on
        self.raise_on = raise_on
        self.disabled = disabled
        self.calls: list[str] = []

    async def embed(self, text: str | None) -> list[float] | None:
        self.calls.append(text or "")
        if self.disabled or not text or not text.strip():
            return None
        if any(marker in text for marker in self.raise_on):
            raise RuntimeError("embedding backend exploded")
        if any(marker in text for marker in self.fail_on):
            return None
        return bag_of_words(text)


class FlakyStore(InMemoryDocumentStore):
    """In-memory store whose named operations fail a set number of times."""

    def __init__(self, failures: dict[str, int] | None = None) -> None:
        super().__init__()
        self.failures = dict(failures or {})
        self.calls: list[str] = []

    def _maybe_fail(self, name: str) -> None:
        self.calls.append(name)
        remaining = self.failures.get(name, 0)
        if remaining:
            self.failures[name] = remaining - 1
            raise StoreUnavailableError(f"{name} failed")

    async def save_document(self, document):
        self._maybe_fail("save_document")
        return await super().save_document(document)

    async def find_documents_by_owner_and_name(self, owner_id, filename):
        self._maybe_fail("find_documents_by_owner_and_name")
        return await super().find_documents_by_owner_and_name(owner_id, filename)

    async def save_chunks(self, chunks):
        self._maybe_fail("save_chunks")
        return await super().save_chunks(chunks)

    async def find_chunks_by_owner(self, owner_id):
        self._maybe_fail("find_chunks_by_owner")
        return await super().find_chunks_by_owner(owner_id)


# ── Fixtures ────────────────────────────────────────────────────────────

NO_PAUSE = {
    FileKind.PDF: BatchPolicy(batch_size=10, pause_seconds=0),
    FileKind.SPREADSHEET: BatchPolicy(batch_size=5, pause_seconds=0),
    FileKind.PRESENTATION: BatchPolicy(batch_size=5, pause_seconds=0),
}

# Stand-in extractors: the upload bytes are the text itself.
TEXT_EXTRACTORS = {ext: (lambda data: data.decode("utf-8")) for ext in (".pdf", ".xlsx", ".xls", ".pptx", ".ppt")}


@pytest.fixture()
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def embedder() -> FakeEmbeddingGateway:
    return FakeEmbeddingGateway()


@pytest.fixture()
def breaker() -> CircuitBreaker:
    return CircuitBreaker(3, 30, retry_policy=RetryPolicy(max_retries=2, backoff=0))


@pytest.fixture()
def coordinator(store: InMemoryDocumentStore, embedder: FakeEmbeddingGateway, breaker: CircuitBreaker) -> IngestionCoordinator:
    return IngestionCoordinator(
        store,
        embedder,
        breaker,
        extractors=TEXT_EXTRACTORS,
        batch_policies=NO_PAUSE,
        pipeline_retry=RetryPolicy(max_retries=2, backoff=0, multiplier=1.0),
    )


@pytest.fixture()
def engine(store: InMemoryDocumentStore, embedder: FakeEmbeddingGateway, breaker: CircuitBreaker) -> RetrievalEngine:
    return RetrievalEngine(store, embedder, breaker)
