"""Domain models for documents, chunks and ranked retrieval results."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


def _new_id() -> str:
    return uuid4().hex


class Document(BaseModel):
    """One uploaded file's metadata and full normalized text.

    At most one live ``Document`` exists per ``(owner_id, filename)``;
    re-uploading a name supersedes the previous one.

    Attributes
    ----------
    id:
        Opaque identifier.
    owner_id:
        Identity of the uploading user.
    filename:
        Original upload name, used for display and for supersede matching.
    content:
        Full normalized text.
    created_at:
        UTC creation timestamp.
    """

    id: str = Field(default_factory=_new_id)
    owner_id: str
    filename: str
    content: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}

    def preview(self, length: int = 200) -> str:
        """Return the first *length* characters, with an ellipsis if cut."""
        if len(self.content) <= length:
            return self.content
        return self.content[:length] + "..."


class DocumentChunk(BaseModel):
    """One retrievable slice of a :class:`Document`.

    A chunk without an ``embedding`` is only reachable through keyword
    retrieval. A chunk with one always carries the model's full vector;
    an empty list is normalised to ``None``.
    """

    id: str = Field(default_factory=_new_id)
    document_id: str
    owner_id: str
    filename: str
    content: str
    chunk_number: int = Field(ge=1)
    start_index: int = Field(ge=0)
    end_index: int = Field(ge=0)
    embedding: list[float] | None = None

    model_config = {"frozen": True}

    @field_validator("embedding")
    @classmethod
    def _empty_embedding_is_none(cls, value: list[float] | None) -> list[float] | None:
        return value or None

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def with_embedding(self, embedding: list[float]) -> DocumentChunk:
        return self.model_copy(update={"embedding": list(embedding)})

    def short_ref(self) -> str:
        """Return a compact ``[filename§chunk]`` reference string."""
        return f"[{self.filename}§{self.chunk_number}]"


class ScoredChunk(BaseModel):
    """A chunk paired with its cosine similarity to a query vector."""

    chunk: DocumentChunk
    similarity: float

    def __str__(self) -> str:  # noqa: D105
        return f"{self.chunk.short_ref()} {self.similarity:.3f}"
