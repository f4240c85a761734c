"""
Answering — turn retrieved context and a question into an LLM answer.

This is the consumer of :class:`~docrag.retrieval.RetrievalEngine`
output. It contains no retrieval logic of its own.

Public API
----------
- :class:`AnswerService` — retrieve context, then ask the chat model.
- :class:`Answer` — the answer text, model name and token usage.
"""

from docrag.answering.service import Answer, AnswerService

__all__ = ["Answer", "AnswerService"]
