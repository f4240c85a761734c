"""Embedding gateway — one text in, one vector (or ``None``) out.

Talks to an OpenAI-compatible ``/embeddings`` endpoint over
``httpx.AsyncClient``. Every failure path resolves to ``None`` so the
ingestion pipeline can keep going chunk by chunk; only transport timeouts
are retried.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from docrag.config import settings
from docrag.resilience import RetryPolicy

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that can turn a text into a vector or ``None``."""

    async def embed(self, text: str | None) -> list[float] | None: ...


class EmbeddingResponseError(ValueError):
    """The API answered, but the body did not contain a usable vector."""


class EmbeddingGateway:
    """Client for the external embedding API.

    Parameters
    ----------
    api_key:
        Bearer token sent in the ``Authorization`` header.
    base_url:
        API root, e.g. ``https://api.openai.com/v1``.
    model:
        Embedding model identifier sent with every request.
    timeout:
        Per-request timeout in seconds.
    max_chars:
        Inputs longer than this are silently truncated.
    retry_policy:
        Applied to transport timeouts only. Defaults to
        ``settings.embedding_max_retries`` retries with exponential backoff
        starting at ``settings.embedding_backoff`` seconds.
    transport:
        Optional ``httpx`` transport, used by tests to stub the API.
    """

    def __init__(
        self,
        api_key: str = settings.openai_api_key,
        *,
        base_url: str = settings.embedding_base_url,
        model: str = settings.embedding_model,
        timeout: float = settings.embedding_timeout,
        max_chars: int = settings.embedding_max_chars,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            logger.warning("No embedding API key configured; requests will be rejected by the API")
        self.model = model
        self.max_chars = max_chars
        self.dimensions: int | None = None
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.embedding_max_retries,
            backoff=settings.embedding_backoff,
            retry_on=(httpx.TimeoutException,),
        )
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> EmbeddingGateway:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- public API -----------------------------------------------------------

    async def embed(self, text: str | None) -> list[float] | None:
        """Return the embedding of *text*, or ``None`` if none could be made.

        Blank input returns ``None`` without a network call.
        """
        if text is None or not text.strip():
            logger.warning("Cannot create embedding for empty text")
            return None

        truncated = text[: self.max_chars]
        logger.debug("Creating embedding for %d chars (input was %d chars)", len(truncated), len(text))

        try:
            body = await self.retry_policy.run(lambda: self._post(truncated), label="embedding request")
        except httpx.TimeoutException as exc:
            logger.error("Embedding request timed out after retries: %s", exc)
            return None
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Embedding request rejected: status %d, body: %s",
                exc.response.status_code,
                exc.response.text[:200],
            )
            return None
        except httpx.HTTPError as exc:
            logger.error("Embedding transport error: %s", exc)
            return None
        except EmbeddingResponseError as exc:
            logger.error("Could not parse embedding response: %s", exc)
            return None

        try:
            vector = self._parse(body)
        except EmbeddingResponseError as exc:
            logger.error("Could not parse embedding response: %s", exc)
            return None

        logger.debug("Embedding created: %d dimensions", len(vector))
        return vector

    # -- internals ------------------------------------------------------------

    async def _post(self, text: str) -> Any:
        response = await self._client.post("/embeddings", json={"model": self.model, "input": text})
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as exc:
            raise EmbeddingResponseError(f"response is not JSON: {exc}") from exc

    def _parse(self, body: Any) -> list[float]:
        if not isinstance(body, dict):
            raise EmbeddingResponseError(f"unexpected body type {type(body).__name__}")
        data = body.get("data")
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise EmbeddingResponseError("no data in embedding response")
        raw = data[0].get("embedding")
        if not isinstance(raw, list) or not raw:
            raise EmbeddingResponseError("no embedding in response")
        if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in raw):
            raise EmbeddingResponseError("embedding contains non-numeric values")

        if self.dimensions is None:
            self.dimensions = len(raw)
        elif len(raw) != self.dimensions:
            raise EmbeddingResponseError(
                f"embedding has {len(raw)} dimensions, expected {self.dimensions}"
            )

        usage = body.get("usage") or {}
        logger.debug("Embedding usage: %s tokens", usage.get("total_tokens", "?"))
        return [float(v) for v in raw]
