"""Text chunking strategies.

Two strategies are supported:

* **windowed** — fixed-size character windows with overlap, used for PDFs.
* **structural** — one chunk per worksheet or slide, split on the
  delimiters the Excel and PowerPoint extractors emit.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from docrag.config import settings
from docrag.ingestion.loader import SLIDE_DELIMITER, WORKSHEET_DELIMITER, FileKind, file_kind


@dataclass(frozen=True)
class TextChunk:
    """A chunk before it is attached to a document.

    Attributes
    ----------
    number:
        1-based chunk number.
    content:
        Chunk text.
    start:
        Start offset in the source text (``0`` for structural chunks).
    end:
        End offset, exclusive (segment length for structural chunks).
    """

    number: int
    content: str
    start: int
    end: int


def chunk_windowed(
    text: str,
    chunk_size: int = settings.chunk_size,
    overlap: int = settings.chunk_overlap,
) -> list[TextChunk]:
    """Split *text* into overlapping fixed-size windows.

    Window *i* spans ``[i * step, min(i * step + chunk_size, len(text)))``
    where ``step = chunk_size - overlap``. Windows starting at or past the
    end of the text are dropped.

    Parameters
    ----------
    text:
        Normalized document text.
    chunk_size:
        Maximum number of characters per chunk.
    overlap:
        Number of characters shared by consecutive chunks.

    Returns
    -------
    list[TextChunk]
        Chunks numbered 1..n without gaps.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if not 0 <= overlap < chunk_size:
        raise ValueError(f"overlap ({overlap}) must be >= 0 and < chunk_size ({chunk_size})")

    length = len(text)
    step = chunk_size - overlap
    chunks: list[TextChunk] = []
    for i in range(math.ceil(length / step)):
        start = i * step
        if start >= length:
            break
        end = min(start + chunk_size, length)
        chunks.append(TextChunk(number=len(chunks) + 1, content=text[start:end], start=start, end=end))
    return chunks


def chunk_structural(text: str, delimiter: str) -> list[TextChunk]:
    """Split *text* on *delimiter*, one chunk per non-empty segment.

    Anything before the first delimiter is a preamble and is not a
    segment. Each chunk keeps the delimiter as a prefix so the sheet or
    slide label survives in the stored content. Empty segments are
    dropped and their number is skipped.
    """
    segments = text.split(delimiter)[1:]
    chunks: list[TextChunk] = []
    for number, segment in enumerate(segments, 1):
        body = segment.strip()
        if not body:
            continue
        chunks.append(TextChunk(number=number, content=delimiter + body, start=0, end=len(body)))
    return chunks


def chunk_for_file(
    text: str,
    filename: str,
    chunk_size: int = settings.chunk_size,
    overlap: int = settings.chunk_overlap,
) -> list[TextChunk]:
    """Chunk *text* with the strategy that matches *filename*'s type."""
    kind = file_kind(filename)
    if kind is FileKind.SPREADSHEET:
        return chunk_structural(text, WORKSHEET_DELIMITER)
    if kind is FileKind.PRESENTATION:
        return chunk_structural(text, SLIDE_DELIMITER)
    return chunk_windowed(text, chunk_size=chunk_size, overlap=overlap)
