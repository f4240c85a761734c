"""Answer service — retrieval context plus question, sent to the chat model."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel

from docrag.answering.prompts import build_document_prompt, build_general_prompt
from docrag.config import settings
from docrag.errors import ValidationError
from docrag.retrieval.retriever import RetrievalEngine, is_sentinel

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel
    from langchain_core.messages import BaseMessage

logger = logging.getLogger(__name__)

ERROR_MODEL = "error"
LLM_FAILURE_ANSWER = "Could not communicate with AI service. Please try again."


class Answer(BaseModel):
    """Answer returned to the caller."""

    answer: str
    model: str
    tokens: int = 0
    used_documents: bool = False

    @property
    def is_error(self) -> bool:
        return self.model == ERROR_MODEL


class AnswerService:
    """Answer questions from an owner's documents, or generally when none match.

    Parameters
    ----------
    engine:
        Retrieval engine producing the context.
    llm:
        Chat model. Defaults to :func:`docrag.answering.llm.get_llm`,
        created lazily so that constructing the service needs no API key.
    max_context_chars:
        Context beyond this length is truncated before prompting.
    """

    def __init__(
        self,
        engine: RetrievalEngine,
        llm: BaseChatModel | None = None,
        *,
        max_context_chars: int = settings.max_context_chars,
    ) -> None:
        self._engine = engine
        self._llm = llm
        self.max_context_chars = max_context_chars

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            from docrag.answering.llm import get_llm

            self._llm = get_llm()
        return self._llm

    async def ask_about_documents(self, question: str, owner_id: str) -> Answer:
        """Answer *question* using *owner_id*'s documents.

        Retrieval errors (blank question, store unavailable) propagate.
        A failing LLM call yields an :class:`Answer` with ``model="error"``.
        """
        context = await self._engine.retrieve(question, owner_id)
        logger.debug("Context found for question: %d chars", len(context))

        if is_sentinel(context):
            logger.info("No valid context found, using general AI")
            return await self.ask(build_general_prompt(question), used_documents=False)

        messages = build_document_prompt(question, context, self.max_context_chars)
        return await self.ask(messages, used_documents=True)

    async def ask_general(self, question: str) -> Answer:
        """Send *question* to the chat model without any document context."""
        if not question or not question.strip():
            raise ValidationError("Question cannot be empty")
        return await self.ask(build_general_prompt(question), used_documents=False)

    async def ask(self, messages: list[BaseMessage], *, used_documents: bool = False) -> Answer:
        try:
            response = await self.llm.ainvoke(messages)
        except Exception as exc:
            logger.error("Failed to communicate with the chat model: %s", exc)
            return Answer(answer=LLM_FAILURE_ANSWER, model=ERROR_MODEL)

        content = response.content if isinstance(response.content, str) else str(response.content)
        metadata = getattr(response, "response_metadata", None) or {}
        usage = getattr(response, "usage_metadata", None) or {}
        model = metadata.get("model_name") or settings.llm_model_name
        tokens = int(usage.get("total_tokens", 0))
        logger.info("AI question processed, model: %s, tokens used: %d", model, tokens)
        return Answer(answer=content.strip(), model=model, tokens=tokens, used_documents=used_documents)
