"""Prompt templates for answer generation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from langchain_core.messages import HumanMessage

from docrag.config import settings

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage

DOCUMENT_PROMPT = """\
Based on following document parts:

{context}

Answer this question in the same language as the question: {question}

Give a detailed answer based only on the provided text."""


def truncate_context(context: str, max_chars: int = settings.max_context_chars) -> str:
    """Cut *context* to *max_chars*, marking the cut with ``...``."""
    if len(context) <= max_chars:
        return context
    return context[:max_chars] + "..."


def build_document_prompt(
    question: str,
    context: str,
    max_chars: int = settings.max_context_chars,
) -> list[BaseMessage]:
    """Prompt that restricts the answer to the retrieved document parts."""
    content = DOCUMENT_PROMPT.format(context=truncate_context(context, max_chars), question=question)
    return [HumanMessage(content=content)]


def build_general_prompt(question: str) -> list[BaseMessage]:
    """Prompt for questions with no relevant document material."""
    return [HumanMessage(content=question)]
