# hirehub/services/extraction.py
"""
Helpers to extract text from uploaded resume bytes.
- PDF   -> pdfminer.six
- DOCX  -> python-docx
- TXT   -> decode bytes
- image -> caller-supplied OCR text (no OCR engine runs here)
"""

import asyncio
import io
import logging
import os
from functools import partial
from typing import Dict, Optional

from docx import Document
from pdfminer.high_level import extract_text_to_fp

from hirehub.core.errors import OcrRequiredError, ValidationError

logger = logging.getLogger(__name__)

# extension -> category
FILE_CATEGORIES: Dict[str, str] = {
    ".pdf": "pdf",
    ".doc": "docx",
    ".docx": "docx",
    ".txt": "txt",
    ".jpg": "image",
    ".jpeg": "image",
    ".png": "image",
    ".gif": "image",
    ".webp": "image",
    ".tiff": "image",
    ".bmp": "image",
}

MIME_TYPES: Dict[str, str] = {
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "text/plain": ".txt",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/tiff": ".tiff",
    "image/bmp": ".bmp",
}

# parsability heuristics
MIN_TEXT_LENGTH = 50
MIN_PRINTABLE_RATIO = 0.85
MIN_WORD_COUNT = 10


def normalize_file_type(filename: Optional[str] = None, content_type: Optional[str] = None) -> str:
    """Return a lower-case extension (".pdf") from a filename, falling back to the MIME type."""
    if filename:
        ext = os.path.splitext(filename)[1].lower()
        if ext:
            return ext
    if content_type:
        return MIME_TYPES.get(content_type.split(";")[0].strip().lower(), "")
    return ""


def file_category(file_type: str) -> Optional[str]:
    ext = file_type.lower() if file_type.startswith(".") else f".{file_type.lower()}"
    return FILE_CATEGORIES.get(ext)


def is_image(file_type: str) -> bool:
    return file_category(file_type) == "image"


def parse_text_bytes(b: bytes, encoding: str = "utf-8") -> str:
    return b.decode(encoding, errors="replace")


def parse_docx_bytes(b: bytes) -> str:
    doc = Document(io.BytesIO(b))
    paras = [p.text.strip() for p in doc.paragraphs if p.text and p.text.strip()]
    return "\n".join(paras)


def parse_pdf_bytes(b: bytes) -> str:
    """
    Extract text from PDF bytes using pdfminer.six high-level API.
    """
    output = io.StringIO()
    extract_text_to_fp(io.BytesIO(b), output, laparams=None)
    return output.getvalue()


PARSERS = {
    "pdf": parse_pdf_bytes,
    "docx": parse_docx_bytes,
    "txt": parse_text_bytes,
}


def is_parsable(text: Optional[str]) -> bool:
    """Heuristic check that extraction produced real prose rather than noise."""
    if not text:
        return False
    stripped = text.strip()
    if len(stripped) < MIN_TEXT_LENGTH:
        return False
    printable = sum(1 for ch in stripped if ch.isprintable() or ch in "\n\t")
    if printable / len(stripped) < MIN_PRINTABLE_RATIO:
        return False
    words = [w for w in stripped.split() if any(c.isalpha() for c in w)]
    return len(words) >= MIN_WORD_COUNT


class TextExtractor:
    """Extracts plain text keyed by file type; blocking parsers run in a thread executor."""

    async def extract(self, file_bytes: bytes, file_type: str, ocr_text: Optional[str] = None) -> str:
        category = file_category(file_type)
        if category is None:
            raise ValidationError(f"Unsupported file type: {file_type}")

        if category == "image":
            if not ocr_text or not ocr_text.strip():
                raise OcrRequiredError("Image resumes need OCR text supplied with the upload")
            return ocr_text.strip()

        if not file_bytes:
            raise ValidationError("Uploaded file is empty")

        parser = PARSERS[category]
        loop = asyncio.get_running_loop()
        try:
            text = await loop.run_in_executor(None, partial(parser, file_bytes))
        except Exception as exc:
            logger.warning("%s parser failed: %s", category, exc)
            text = ""

        if is_parsable(text):
            return text.strip()
        # scanned PDFs and the like come through as empty or garbage text
        if ocr_text and ocr_text.strip():
            logger.info("Extracted %s text failed parsability checks; using supplied OCR text", category)
            return ocr_text.strip()
        raise OcrRequiredError("Could not extract readable text from the document; OCR text required")
