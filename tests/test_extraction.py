import pytest

from supportdesk.extraction import count_words, extract_text, sanitize_text


def test_sanitize_text_strips_nul_and_control_chars():
    assert sanitize_text("Hello\x00 World\x07\n\tOK") == "Hello World\n\tOK"
    assert sanitize_text("") == ""


def test_count_words():
    assert count_words("one  two\nthree") == 3
    assert count_words("") == 0


def test_extract_plain_text(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("Refunds are processed\x00 within 5 days.", encoding="utf-8")

    result = extract_text(str(path), "txt")

    assert result == {"text": "Refunds are processed within 5 days.", "page_count": None, "word_count": 6}


def test_extract_markdown(tmp_path):
    path = tmp_path / "guide.md"
    path.write_text("# Setup\n\nInstall the app.", encoding="utf-8")
    assert extract_text(str(path), "md")["word_count"] == 5


def test_extract_docx(tmp_path):
    from docx import Document

    path = tmp_path / "policy.docx"
    doc = Document()
    doc.add_paragraph("Shipping policy")
    doc.add_paragraph("Orders ship in two days.")
    doc.save(str(path))

    result = extract_text(str(path), "docx")

    assert "Shipping policy\nOrders ship in two days." in result["text"]
    assert result["word_count"] == 7


def test_extract_pdf(tmp_path):
    import fitz

    path = tmp_path / "manual.pdf"
    with fitz.open() as doc:
        for text in ("First page", "Second page"):
            page = doc.new_page()
            page.insert_text((72, 72), text)
        doc.save(str(path))

    result = extract_text(str(path), "pdf")

    assert result["page_count"] == 2
    assert "First page" in result["text"]
    assert "Second page" in result["text"]


def test_unsupported_type(tmp_path):
    with pytest.raises(ValueError, match="Unsupported file type"):
        extract_text(str(tmp_path / "a.xls"), "xls")
