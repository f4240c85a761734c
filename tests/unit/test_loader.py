"""Unit tests for file-type validation and the format extractors."""

from __future__ import annotations

import io

import pytest

from docrag.errors import ExtractionError, ValidationError
from docrag.ingestion.loader import (
    SLIDE_DELIMITER,
    WORKSHEET_DELIMITER,
    FileKind,
    extract_pdf,
    extract_pptx,
    extract_text,
    extract_xlsx,
    file_extension,
    file_kind,
)


def _xlsx_bytes() -> bytes:
    import openpyxl

    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = "Q1"
    sheet.append(["Region", "Revenue"])
    sheet.append(["North", 10])
    sheet.append(["South", 12.0])
    workbook.create_sheet("Empty")
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _pptx_bytes() -> bytes:
    from pptx import Presentation

    presentation = Presentation()
    slide = presentation.slides.add_slide(presentation.slide_layouts[1])
    slide.shapes.title.text = "Roadmap"
    slide.placeholders[1].text = "Hire two engineers"
    presentation.slides.add_slide(presentation.slide_layouts[6])
    buffer = io.BytesIO()
    presentation.save(buffer)
    return buffer.getvalue()


def _blank_pdf_bytes() -> bytes:
    from pypdf import PdfWriter

    writer = PdfWriter()
    writer.add_blank_page(width=72, height=72)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


# ── File type validation ────────────────────────────────────────────────


class TestFileKind:
    @pytest.mark.parametrize(
        ("filename", "kind"),
        [
            ("report.pdf", FileKind.PDF),
            ("REPORT.PDF", FileKind.PDF),
            ("budget.xlsx", FileKind.SPREADSHEET),
            ("old.xls", FileKind.SPREADSHEET),
            ("deck.pptx", FileKind.PRESENTATION),
            ("old.ppt", FileKind.PRESENTATION),
            ("archive.v2.pdf", FileKind.PDF),
        ],
    )
    def test_supported(self, filename: str, kind: FileKind) -> None:
        assert file_kind(filename) is kind

    @pytest.mark.parametrize("filename", ["notes.txt", "image.png", "doc.docx"])
    def test_unsupported_extension(self, filename: str) -> None:
        with pytest.raises(ValidationError, match="File type not supported"):
            file_kind(filename)

    def test_missing_extension(self) -> None:
        with pytest.raises(ValidationError, match="no extension"):
            file_kind("README")

    @pytest.mark.parametrize("filename", ["", "   "])
    def test_blank_filename(self, filename: str) -> None:
        with pytest.raises(ValidationError, match="Invalid filename"):
            file_kind(filename)

    def test_extension_is_lowercased(self) -> None:
        assert file_extension("Deck.PpTx") == ".pptx"


# ── extract_text dispatch ───────────────────────────────────────────────


class TestExtractText:
    @pytest.mark.asyncio
    async def test_uses_extractor_for_extension(self) -> None:
        extractors = {".pdf": lambda data: "pdf:" + data.decode()}
        assert await extract_text("a.pdf", b"hello", extractors) == "pdf:hello"

    @pytest.mark.asyncio
    async def test_empty_upload_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="empty"):
            await extract_text("a.pdf", b"", {".pdf": lambda data: "unused"})

    @pytest.mark.asyncio
    async def test_unsupported_type_is_rejected_before_extraction(self) -> None:
        calls: list[bytes] = []
        with pytest.raises(ValidationError):
            await extract_text("a.txt", b"data", {".txt": calls.append})
        assert calls == []

    @pytest.mark.asyncio
    async def test_missing_extractor(self) -> None:
        with pytest.raises(ExtractionError):
            await extract_text("a.pptx", b"data", {})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("filename", ["legacy.xls", "legacy.ppt"])
    async def test_legacy_binary_formats_fail_extraction(self, filename: str) -> None:
        with pytest.raises(ExtractionError, match="Legacy"):
            await extract_text(filename, b"\xd0\xcf\x11\xe0")


# ── Real extractors ─────────────────────────────────────────────────────


class TestExtractors:
    def test_xlsx_layout(self) -> None:
        text = extract_xlsx(_xlsx_bytes())

        assert text.startswith("=== EXCEL DOCUMENT ===")
        assert f"{WORKSHEET_DELIMITER}'Q1' ---" in text
        assert "Col 1 | Col 2" in text
        assert "Region | Revenue" in text
        assert "North | 10" in text
        assert "South | 12" in text
        assert "SUMMARY: 3 data rows, 2 columns" in text
        assert f"{WORKSHEET_DELIMITER}'Empty' ---" in text
        assert "(empty sheet)" in text

    def test_pptx_layout(self) -> None:
        text = extract_pptx(_pptx_bytes())

        assert text.startswith("=== POWERPOINT PRESENTATION ===")
        assert "Total slides: 2" in text
        assert f"{SLIDE_DELIMITER}1 ---" in text
        assert f"{SLIDE_DELIMITER}2 ---" in text
        assert "TITLE: Roadmap" in text
        assert "Hire two engineers" in text
        assert text.count("Roadmap") == 1

    def test_blank_pdf_has_no_text(self) -> None:
        assert extract_pdf(_blank_pdf_bytes()).strip() == ""

    @pytest.mark.parametrize("extractor", [extract_pdf, extract_xlsx, extract_pptx])
    def test_garbage_bytes_raise_extraction_error(self, extractor) -> None:
        with pytest.raises(ExtractionError):
            extractor(b"this is not a real office or pdf file")
