"""Exception hierarchy shared by ingestion, retrieval and serving.

Every error carries an ``error_code`` so the HTTP layer can render a
``{"error_code": ..., "message": ...}`` body without inspecting types.
"""

from __future__ import annotations


class DocRagError(Exception):
    """Base class for all errors raised by this package."""

    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DocRagError):
    """Bad input: unsupported file type, empty upload, blank question."""

    error_code = "VALIDATION_ERROR"


class ExtractionError(DocRagError):
    """A format extractor could not turn the uploaded bytes into text."""

    error_code = "FILE_PROCESSING_ERROR"


class DocumentNotFoundError(DocRagError):
    error_code = "RESOURCE_NOT_FOUND"


class DocumentSupersededError(DocRagError):
    """A newer upload of the same name replaced the document mid-ingestion."""

    error_code = "DOCUMENT_SUPERSEDED"


class StoreUnavailableError(DocRagError):
    """Transient persistence failure; safe to retry."""

    error_code = "DATABASE_CONNECTION_ERROR"


class ServiceUnavailableError(DocRagError):
    """Retries exhausted and no degrade path exists."""

    error_code = "SERVICE_UNAVAILABLE"


class CircuitOpenError(ServiceUnavailableError):
    """The circuit breaker is open and rejected the call without trying it."""

    error_code = "CIRCUIT_OPEN"

    def __init__(self, message: str, retry_after: float) -> None:
        super().__init__(message)
        self.retry_after = retry_after
