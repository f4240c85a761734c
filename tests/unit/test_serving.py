"""Unit tests for the serving layer."""

from __future__ import annotations

import asyncio
from typing import Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import NO_PAUSE, TEXT_EXTRACTORS, FakeEmbeddingGateway, FlakyStore
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage

from docrag.answering import AnswerService
from docrag.errors import DocumentSupersededError
from docrag.ingestion.coordinator import IngestionCoordinator
from docrag.resilience import CircuitBreaker, RetryPolicy
from docrag.retrieval.memory_store import InMemoryDocumentStore
from docrag.retrieval.retriever import NO_DOCUMENTS, RetrievalEngine
from docrag.serving.app import Services, create_app

OWNER = {"X-Owner-Id": "alice-0123456789"}


def _services(store: InMemoryDocumentStore, breaker: CircuitBreaker | None = None) -> Services:
    embedder = FakeEmbeddingGateway()
    breaker = breaker or CircuitBreaker(3, 30, retry_policy=RetryPolicy(max_retries=0, backoff=0))
    engine = RetrievalEngine(store, embedder, breaker)
    llm = MagicMock()
    llm.ainvoke = AsyncMock(
        return_value=AIMessage(
            content="Revenue doubled.",
            response_metadata={"model_name": "gpt-3.5-turbo"},
            usage_metadata={"input_tokens": 90, "output_tokens": 10, "total_tokens": 100},
        )
    )
    return Services(
        coordinator=IngestionCoordinator(
            store,
            embedder,
            breaker,
            extractors=TEXT_EXTRACTORS,
            batch_policies=NO_PAUSE,
            pipeline_retry=RetryPolicy(max_retries=0, backoff=0),
        ),
        engine=engine,
        answers=AnswerService(engine, llm),
    )


@pytest.fixture()
def client() -> Iterator[TestClient]:
    with TestClient(create_app(_services(InMemoryDocumentStore()))) as test_client:
        yield test_client


def _upload(client: TestClient, filename: str = "report.pdf", data: bytes = b"revenue doubled in 2023"):
    return client.post("/documents", files={"file": (filename, data, "application/pdf")}, headers=OWNER)


# ── Health ──────────────────────────────────────────────────────────────


def test_health_endpoint() -> None:
    """GET /health should return 200 with status ok."""
    from docrag.serving.app import app

    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


# ── Documents ───────────────────────────────────────────────────────────


class TestDocuments:
    def test_upload(self, client: TestClient) -> None:
        response = _upload(client)

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "File uploaded successfully"
        assert body["filename"] == "report.pdf"
        assert body["preview"] == "revenue doubled in 2023"
        assert body["chunk_count"] == 1
        assert body["embedded_count"] == 1
        assert body["document_id"]

    def test_reupload_keeps_one_document(self, client: TestClient) -> None:
        _upload(client, data=b"first version")
        latest = _upload(client, data=b"second version").json()

        listed = client.get("/documents", headers=OWNER).json()
        assert [d["id"] for d in listed] == [latest["document_id"]]
        assert listed[0]["preview"] == "second version"

    def test_unsupported_type(self, client: TestClient) -> None:
        response = _upload(client, filename="notes.txt")

        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"
        assert "Allowed types" in response.json()["message"]

    def test_legacy_format_is_processing_error(self) -> None:
        services = _services(InMemoryDocumentStore())
        services.coordinator = IngestionCoordinator(
            InMemoryDocumentStore(), FakeEmbeddingGateway(), batch_policies=NO_PAUSE
        )
        with TestClient(create_app(services)) as client:
            response = _upload(client, filename="old.xls", data=b"\xd0\xcf\x11\xe0")

        assert response.status_code == 400
        assert response.json()["error_code"] == "FILE_PROCESSING_ERROR"

    def test_document_texts(self, client: TestClient) -> None:
        _upload(client, filename="a.pdf", data=b"office move  planned")

        response = client.get("/documents/text", headers=OWNER)

        assert response.status_code == 200
        assert response.json() == [{"filename": "a.pdf", "text": "office move planned"}]
        assert client.get("/documents/text", headers={"X-Owner-Id": "bob"}).json() == []

    def test_upload_replaced_mid_ingestion_is_conflict(self) -> None:
        async def superseded() -> None:
            raise DocumentSupersededError("a.pdf was replaced by a newer upload while it was being processed")

        services = _services(InMemoryDocumentStore())
        services.coordinator = MagicMock()
        services.coordinator.schedule = lambda *args: asyncio.ensure_future(superseded())
        with TestClient(create_app(services)) as client:
            response = _upload(client, filename="a.pdf")

        assert response.status_code == 409
        assert response.json()["error_code"] == "DOCUMENT_SUPERSEDED"

    def test_owner_header_required(self, client: TestClient) -> None:
        response = client.post("/documents", files={"file": ("a.pdf", b"text", "application/pdf")})
        assert response.status_code == 422

    def test_delete(self, client: TestClient) -> None:
        document_id = _upload(client).json()["document_id"]

        response = client.delete(f"/documents/{document_id}", headers=OWNER)

        assert response.status_code == 200
        assert client.get("/documents", headers=OWNER).json() == []

    def test_delete_other_owners_document_is_not_found(self, client: TestClient) -> None:
        document_id = _upload(client).json()["document_id"]

        response = client.delete(f"/documents/{document_id}", headers={"X-Owner-Id": "mallory"})

        assert response.status_code == 404
        assert response.json()["error_code"] == "RESOURCE_NOT_FOUND"


# ── Questions and context ───────────────────────────────────────────────


class TestQuestions:
    def test_question_uses_documents(self, client: TestClient) -> None:
        _upload(client)

        response = client.post("/questions", json={"question": "what happened to revenue"}, headers=OWNER)

        assert response.status_code == 200
        assert response.json() == {
            "answer": "Revenue doubled.",
            "model": "gpt-3.5-turbo",
            "tokens": 100,
            "used_documents": True,
        }

    def test_general_question_needs_no_owner(self, client: TestClient) -> None:
        _upload(client)

        response = client.post("/questions/general", json={"question": "what is revenue"})

        assert response.status_code == 200
        assert response.json()["used_documents"] is False
        assert response.json()["answer"] == "Revenue doubled."

    def test_blank_general_question(self, client: TestClient) -> None:
        response = client.post("/questions/general", json={"question": ""})
        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_context_without_documents_is_sentinel(self, client: TestClient) -> None:
        response = client.post("/context", json={"question": "anything"}, headers=OWNER)
        assert response.json() == {"context": NO_DOCUMENTS}

    def test_blank_question(self, client: TestClient) -> None:
        response = client.post("/questions", json={"question": "  "}, headers=OWNER)
        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_open_circuit_sets_retry_after(self) -> None:
        store = FlakyStore(failures={"find_chunks_by_owner": 10})
        breaker = CircuitBreaker(1, 30, retry_policy=RetryPolicy(max_retries=0, backoff=0))
        with TestClient(create_app(_services(store, breaker))) as client:
            first = client.post("/context", json={"question": "revenue"}, headers=OWNER)
            second = client.post("/context", json={"question": "revenue"}, headers=OWNER)

        assert first.status_code == 503
        assert first.json()["error_code"] == "SERVICE_UNAVAILABLE"
        assert second.status_code == 503
        assert second.json()["error_code"] == "CIRCUIT_OPEN"
        assert second.headers["Retry-After"] == "30"
