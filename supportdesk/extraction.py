"""Plain-text extraction for uploaded support documents.

Supported formats:
- PDF via PyMuPDF (fitz), one text block per page
- DOCX via python-docx, paragraph text
- TXT / MD read as UTF-8
"""
import logging
from typing import Any, Dict

logger = logging.getLogger("support.extraction")


def sanitize_text(text: str) -> str:
    """Remove null bytes and other problematic characters from text.

    PostgreSQL text columns cannot contain NUL (0x00) characters.
    Some PDFs contain these from binary data or corrupted extraction.
    """
    if not text:
        return text
    text = text.replace('\x00', '')
    # Keep newline, tab and carriage return; drop other control characters
    return ''.join(char for char in text if char in ('\n', '\t', '\r') or ord(char) >= 32)


def count_words(text: str) -> int:
    return len(text.split()) if text else 0


def extract_pdf(file_path: str) -> Dict[str, Any]:
    import fitz  # PyMuPDF

    with fitz.open(file_path) as doc:
        pages = [page.get_text() for page in doc]
        page_count = doc.page_count
    return {"text": "\n".join(pages), "page_count": page_count}


def extract_docx(file_path: str) -> Dict[str, Any]:
    from docx import Document

    doc = Document(file_path)
    paragraphs = [p.text for p in doc.paragraphs]
    return {"text": "\n".join(paragraphs), "page_count": None}


def extract_plain(file_path: str) -> Dict[str, Any]:
    with open(file_path, "r", encoding="utf-8") as f:
        return {"text": f.read(), "page_count": None}


_EXTRACTORS = {
    "pdf": extract_pdf,
    "docx": extract_docx,
    "txt": extract_plain,
    "md": extract_plain,
}


def extract_text(file_path: str, file_type: str) -> Dict[str, Any]:
    """Extract text and basic statistics from a stored file.

    Args:
        file_path: Path of the uploaded file on disk.
        file_type: One of "pdf", "docx", "txt", "md".

    Returns:
        {"text": str, "page_count": int | None, "word_count": int}

    Raises:
        ValueError: If the file type is unsupported.
    """
    extractor = _EXTRACTORS.get(file_type)
    if extractor is None:
        raise ValueError(f"Unsupported file type: {file_type}")

    result = extractor(file_path)
    text = sanitize_text(result["text"] or "")
    logger.debug("Extracted %d characters from %s", len(text), file_path)
    return {
        "text": text,
        "page_count": result["page_count"],
        "word_count": count_words(text),
    }
