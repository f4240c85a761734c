"""FastAPI application exposing upload, document management and Q&A.

Authentication is handled upstream; the authenticated user's id arrives
in the ``X-Owner-Id`` header.
"""

from __future__ import annotations

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from fastapi import Depends, FastAPI, File, Header, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from docrag.answering import Answer, AnswerService
from docrag.config import settings
from docrag.errors import (
    CircuitOpenError,
    DocRagError,
    DocumentNotFoundError,
    DocumentSupersededError,
    ExtractionError,
    ServiceUnavailableError,
    ValidationError,
)
from docrag.ingestion.coordinator import IngestionCoordinator
from docrag.ingestion.embedder import EmbeddingGateway
from docrag.resilience import CircuitBreaker
from docrag.retrieval.memory_store import InMemoryDocumentStore
from docrag.retrieval.retriever import RetrievalEngine

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the routes need, built once per application."""

    coordinator: IngestionCoordinator
    engine: RetrievalEngine
    answers: AnswerService
    gateway: EmbeddingGateway | None = None


def build_services() -> Services:
    """Wire the default in-memory store, embedding gateway and shared breaker."""
    store = InMemoryDocumentStore()
    gateway = EmbeddingGateway()
    breaker = CircuitBreaker()
    engine = RetrievalEngine(store, gateway, breaker)
    return Services(
        coordinator=IngestionCoordinator(store, gateway, breaker),
        engine=engine,
        answers=AnswerService(engine),
        gateway=gateway,
    )


# ── Request / Response schemas ────────────────────────────────────────
class QuestionRequest(BaseModel):
    """Incoming question from the user."""

    question: str


class ContextResponse(BaseModel):
    context: str


class UploadResponse(BaseModel):
    message: str
    document_id: str
    filename: str
    preview: str
    chunk_count: int
    embedded_count: int


class DocumentInfo(BaseModel):
    id: str
    filename: str
    created_at: str
    preview: str


class DocumentText(BaseModel):
    filename: str
    text: str


class MessageResponse(BaseModel):
    message: str


# ── Error mapping ─────────────────────────────────────────────────────
_STATUS_BY_ERROR: list[tuple[type[DocRagError], int]] = [
    (ValidationError, 400),
    (ExtractionError, 400),
    (DocumentNotFoundError, 404),
    (DocumentSupersededError, 409),
    (ServiceUnavailableError, 503),
]


def _status_for(exc: DocRagError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


async def _handle_docrag_error(request: Request, exc: DocRagError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.error("%s on %s %s: %s", exc.error_code, request.method, request.url.path, exc.message)
    else:
        logger.warning("%s on %s %s: %s", exc.error_code, request.method, request.url.path, exc.message)
    headers = {}
    if isinstance(exc, CircuitOpenError):
        headers["Retry-After"] = str(max(math.ceil(exc.retry_after), 1))
    return JSONResponse(
        status_code=status,
        content={"error_code": exc.error_code, "message": exc.message},
        headers=headers,
    )


# ── Application factory ───────────────────────────────────────────────
def create_app(services: Services | None = None) -> FastAPI:
    """Build the API. Pass *services* to inject fakes in tests."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services()
        yield
        gateway = app.state.services.gateway
        if gateway is not None:
            await gateway.aclose()

    app = FastAPI(
        title="Document Q&A API",
        version="0.1.0",
        description="Upload documents and ask questions answered from their contents.",
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_exception_handler(DocRagError, _handle_docrag_error)

    def get_services(request: Request) -> Services:
        return request.app.state.services

    # ── Routes ────────────────────────────────────────────────────────
    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness check."""
        return {"status": "ok"}

    @app.post("/documents", response_model=UploadResponse)
    async def upload_document(
        file: UploadFile = File(...),
        owner_id: str = Header(..., alias="X-Owner-Id"),
        services: Services = Depends(get_services),
    ) -> UploadResponse:
        """Ingest an upload, replacing any earlier document with the same name."""
        data = await file.read()
        filename = file.filename or ""
        task = services.coordinator.schedule(owner_id, filename, data)
        # A dropped connection must not abort ingestion half-way.
        result = await asyncio.shield(task)
        document = result.document
        return UploadResponse(
            message="File uploaded successfully",
            document_id=document.id,
            filename=document.filename,
            preview=document.preview(),
            chunk_count=result.chunk_count,
            embedded_count=result.embedded_count,
        )

    @app.get("/documents", response_model=list[DocumentInfo])
    async def list_documents(
        owner_id: str = Header(..., alias="X-Owner-Id"),
        services: Services = Depends(get_services),
    ) -> list[DocumentInfo]:
        documents = await services.coordinator.list_documents(owner_id)
        return [
            DocumentInfo(id=d.id, filename=d.filename, created_at=d.created_at.isoformat(), preview=d.preview())
            for d in documents
        ]

    @app.get("/documents/text", response_model=list[DocumentText])
    async def document_texts(
        owner_id: str = Header(..., alias="X-Owner-Id"),
        services: Services = Depends(get_services),
    ) -> list[DocumentText]:
        """Return the opening words of each of the caller's documents."""
        texts = await services.coordinator.document_texts(owner_id)
        return [DocumentText(filename=filename, text=text) for filename, text in texts]

    @app.delete("/documents/{document_id}", response_model=MessageResponse)
    async def delete_document(
        document_id: str,
        owner_id: str = Header(..., alias="X-Owner-Id"),
        services: Services = Depends(get_services),
    ) -> MessageResponse:
        await services.coordinator.delete_document(owner_id, document_id)
        return MessageResponse(message=f"Document with id: {document_id} deleted successfully")

    @app.post("/questions", response_model=Answer)
    async def ask_question(
        request: QuestionRequest,
        owner_id: str = Header(..., alias="X-Owner-Id"),
        services: Services = Depends(get_services),
    ) -> Answer:
        """Answer a question from the caller's documents."""
        return await services.answers.ask_about_documents(request.question, owner_id)

    @app.post("/questions/general", response_model=Answer)
    async def ask_general_question(request: QuestionRequest, services: Services = Depends(get_services)) -> Answer:
        """Answer a question from the chat model alone, ignoring stored documents."""
        return await services.answers.ask_general(request.question)

    @app.post("/context", response_model=ContextResponse)
    async def retrieve_context(
        request: QuestionRequest,
        owner_id: str = Header(..., alias="X-Owner-Id"),
        services: Services = Depends(get_services),
    ) -> ContextResponse:
        """Return the raw retrieval context, without calling the chat model."""
        return ContextResponse(context=await services.engine.retrieve(request.question, owner_id))

    return app


logging.basicConfig(level=settings.log_level)
app = create_app()
