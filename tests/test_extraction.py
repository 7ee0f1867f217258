# tests/test_extraction.py
import io

import pytest
from docx import Document

from conftest import RESUME_TEXT
from hirehub.core.errors import OcrRequiredError, ValidationError
from hirehub.services.extraction import TextExtractor, file_category, is_parsable, normalize_file_type


def test_normalize_file_type_prefers_extension_then_mime():
    assert normalize_file_type("CV.PDF") == ".pdf"
    assert normalize_file_type("resume", "application/pdf") == ".pdf"
    assert normalize_file_type(None, "image/png; charset=binary") == ".png"
    assert normalize_file_type(None, "application/zip") == ""
    assert file_category(".doc") == "docx"
    assert file_category("jpeg") == "image"


def test_is_parsable_rejects_short_or_binary_text():
    assert is_parsable(RESUME_TEXT)
    assert not is_parsable("too short")
    assert not is_parsable("\x00\x01\x02" * 40)
    assert not is_parsable("")


def _docx_bytes(lines):
    doc = Document()
    for line in lines:
        doc.add_paragraph(line)
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


@pytest.mark.asyncio
async def test_extracts_txt_and_docx():
    extractor = TextExtractor()
    assert (await extractor.extract(RESUME_TEXT.encode(), ".txt")).startswith("Jane Doe")

    text = await extractor.extract(_docx_bytes(RESUME_TEXT.splitlines()), ".docx")
    assert "jane.doe@example.com" in text
    assert "Senior Engineer at Acme Corp" in text


@pytest.mark.asyncio
async def test_image_needs_ocr_text():
    extractor = TextExtractor()
    with pytest.raises(OcrRequiredError):
        await extractor.extract(b"\x89PNG", ".png")
    assert await extractor.extract(b"\x89PNG", ".png", ocr_text="  scanned text  ") == "scanned text"


@pytest.mark.asyncio
async def test_unreadable_pdf_falls_back_to_ocr_text():
    extractor = TextExtractor()
    with pytest.raises(OcrRequiredError):
        await extractor.extract(b"%PDF-1.4 not really a pdf", ".pdf")
    text = await extractor.extract(b"%PDF-1.4 not really a pdf", ".pdf", ocr_text=RESUME_TEXT)
    assert text == RESUME_TEXT.strip()


@pytest.mark.asyncio
async def test_unknown_type_and_empty_bytes_are_rejected():
    extractor = TextExtractor()
    with pytest.raises(ValidationError):
        await extractor.extract(b"data", ".exe")
    with pytest.raises(ValidationError):
        await extractor.extract(b"", ".txt")
