"""Document loaders — turn uploaded PDF / Excel / PowerPoint bytes into text.

The Excel and PowerPoint extractors mark sheet and slide boundaries with
:data:`WORKSHEET_DELIMITER` and :data:`SLIDE_DELIMITER`; the structural
chunker splits on the same markers. The markers contain only single
spaces so they survive text normalization.

Extraction is CPU-bound and blocking, so :func:`extract_text` runs the
extractor in a worker thread.
"""

from __future__ import annotations

import asyncio
import enum
import io
import logging
from typing import Callable

from docrag.errors import ExtractionError, ValidationError

logger = logging.getLogger(__name__)

WORKSHEET_DELIMITER = "--- WORKSHEET: "
SLIDE_DELIMITER = "--- SLIDE "

# Excel sheets wider than this are cut off.
MAX_SHEET_COLUMNS = 50


class FileKind(enum.Enum):
    PDF = "pdf"
    SPREADSHEET = "spreadsheet"
    PRESENTATION = "presentation"


SUPPORTED_EXTENSIONS: dict[str, FileKind] = {
    ".pdf": FileKind.PDF,
    ".xlsx": FileKind.SPREADSHEET,
    ".xls": FileKind.SPREADSHEET,
    ".pptx": FileKind.PRESENTATION,
    ".ppt": FileKind.PRESENTATION,
}


def file_extension(filename: str) -> str:
    """Return the lowercased extension of *filename*, including the dot."""
    dot = filename.rfind(".")
    if dot == -1:
        raise ValidationError("File has no extension")
    return filename[dot:].lower()


def file_kind(filename: str) -> FileKind:
    """Classify *filename* by extension.

    Raises
    ------
    ValidationError
        Blank filename or an extension outside :data:`SUPPORTED_EXTENSIONS`.
    """
    if not filename or not filename.strip():
        raise ValidationError("Invalid filename")
    kind = SUPPORTED_EXTENSIONS.get(file_extension(filename))
    if kind is None:
        allowed = ", ".join(SUPPORTED_EXTENSIONS)
        raise ValidationError(f"File type not supported. Allowed types: {allowed}")
    return kind


# -- extractors ----------------------------------------------------------------


def extract_pdf(data: bytes) -> str:
    """Concatenate the text of every page."""
    from pypdf import PdfReader
    from pypdf.errors import PdfReadError

    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except PdfReadError as exc:
        raise ExtractionError(f"PDF processing error: {exc}") from exc
    return "\n".join(pages)


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def extract_xlsx(data: bytes) -> str:
    """Render every worksheet as a pipe-separated table under a worksheet marker."""
    import openpyxl

    if len(data) < 8:
        raise ExtractionError("Invalid Excel file")
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:  # openpyxl raises zipfile/KeyError/InvalidFileException variants
        raise ExtractionError(f"Cannot read Excel file: {exc}") from exc

    parts = ["=== EXCEL DOCUMENT ===\n"]
    try:
        for sheet in workbook.worksheets:
            parts.append(f"{WORKSHEET_DELIMITER}'{sheet.title}' ---\n")
            rows = []
            for row in sheet.iter_rows(values_only=True):
                cells = [_cell_text(v) for v in row[:MAX_SHEET_COLUMNS]]
                if any(cells):
                    rows.append(cells)
            if not rows:
                parts.append("(empty sheet)\n")
                continue
            width = max(len(r) for r in rows)
            parts.append("DATA IN TABULAR FORM:")
            parts.append(" | ".join(f"Col {c + 1}" for c in range(width)))
            parts.extend(" | ".join(r) for r in rows)
            parts.append(f"SUMMARY: {len(rows)} data rows, {width} columns\n")
    finally:
        workbook.close()
    return "\n".join(parts)


def extract_pptx(data: bytes) -> str:
    """Render each slide's title and text frames under a slide marker."""
    from pptx import Presentation

    try:
        presentation = Presentation(io.BytesIO(data))
    except Exception as exc:  # python-pptx surfaces zipfile, KeyError and PackageNotFoundError
        raise ExtractionError(f"Cannot read PowerPoint file: {exc}") from exc

    slides = list(presentation.slides)
    parts = ["=== POWERPOINT PRESENTATION ===", f"Total slides: {len(slides)}\n"]
    for number, slide in enumerate(slides, 1):
        parts.append(f"{SLIDE_DELIMITER}{number} ---\n")
        title_shape = slide.shapes.title
        title_id = title_shape.shape_id if title_shape is not None else None
        if title_shape is not None and title_shape.text.strip():
            parts.append(f"TITLE: {title_shape.text.strip()}\n")
        for shape in slide.shapes:
            if shape.shape_id == title_id or not shape.has_text_frame:
                continue
            text = shape.text_frame.text.strip()
            if text:
                parts.append(text)
        parts.append("")
    return "\n".join(parts)


def _unsupported_legacy(kind: str) -> Callable[[bytes], str]:
    def _extract(data: bytes) -> str:
        raise ExtractionError(f"Legacy binary {kind} files cannot be read; save as the XML format and re-upload")

    return _extract


EXTRACTORS: dict[str, Callable[[bytes], str]] = {
    ".pdf": extract_pdf,
    ".xlsx": extract_xlsx,
    ".xls": _unsupported_legacy(".xls"),
    ".pptx": extract_pptx,
    ".ppt": _unsupported_legacy(".ppt"),
}


async def extract_text(
    filename: str,
    data: bytes,
    extractors: dict[str, Callable[[bytes], str]] | None = None,
) -> str:
    """Extract raw text from *data* using the extractor for *filename*.

    Parameters
    ----------
    filename:
        Original upload name; only its extension is used.
    data:
        File contents.
    extractors:
        Extension → extractor mapping. Defaults to :data:`EXTRACTORS`.

    Raises
    ------
    ValidationError
        Unsupported file type or empty upload.
    ExtractionError
        The extractor could not read the file.
    """
    file_kind(filename)
    if not data:
        raise ValidationError("Uploaded file is empty")
    registry = EXTRACTORS if extractors is None else extractors
    extractor = registry.get(file_extension(filename))
    if extractor is None:
        raise ExtractionError(f"No extractor registered for {filename}")
    text = await asyncio.to_thread(extractor, data)
    logger.info("Extracted %d characters from %s", len(text), filename)
    return text
