"""Tests for tools/doc_reader.py."""

from __future__ import annotations

from pathlib import Path

import docx
import fitz
import pytest

from skkn_writer.tools.doc_reader import (
    list_reference_files,
    read_document,
    read_reference_documents,
    truncate_for_prompt,
)


@pytest.fixture
def sample_docx(tmp_path: Path) -> Path:
    path = tmp_path / "mau.docx"
    document = docx.Document()
    document.add_paragraph("I. ĐẶT VẤN ĐỀ")
    document.add_paragraph("1. Lý do chọn đề tài")
    document.save(str(path))
    return path


@pytest.fixture
def sample_pdf(tmp_path: Path) -> Path:
    path = tmp_path / "ref.pdf"
    with fitz.open() as doc:
        page = doc.new_page()
        page.insert_text((72, 72), "Reference document page one")
        doc.save(str(path))
    return path


class TestReadDocument:
    def test_reads_docx_paragraphs(self, sample_docx):
        text = read_document(sample_docx)
        assert text.splitlines() == ["I. ĐẶT VẤN ĐỀ", "1. Lý do chọn đề tài"]

    def test_reads_pdf_text(self, sample_pdf):
        assert "Reference document page one" in read_document(sample_pdf)

    def test_reads_plain_text(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("  # Ghi chú\nNội dung  \n", encoding="utf-8")
        assert read_document(path) == "# Ghi chú\nNội dung"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_document(tmp_path / "missing.pdf")

    def test_unsupported_suffix_raises(self, tmp_path):
        path = tmp_path / "slides.pptx"
        path.write_bytes(b"")
        with pytest.raises(ValueError):
            read_document(path)


class TestReferenceDocuments:
    def test_directory_expansion_skips_unsupported(self, tmp_path):
        (tmp_path / "b.txt").write_text("B", encoding="utf-8")
        (tmp_path / "a.md").write_text("A", encoding="utf-8")
        (tmp_path / "image.png").write_bytes(b"\x89PNG")
        files = list_reference_files([tmp_path])
        assert [f.name for f in files] == ["a.md", "b.txt"]

    def test_joined_with_file_headers(self, tmp_path):
        (tmp_path / "a.txt").write_text("Nội dung A", encoding="utf-8")
        (tmp_path / "b.txt").write_text("Nội dung B", encoding="utf-8")
        text = read_reference_documents([tmp_path / "a.txt", tmp_path / "b.txt"])
        assert text == "=== TÀI LIỆU: a.txt ===\nNội dung A\n\n=== TÀI LIỆU: b.txt ===\nNội dung B"

    def test_empty_files_are_skipped(self, tmp_path):
        (tmp_path / "empty.txt").write_text("   ", encoding="utf-8")
        assert read_reference_documents([tmp_path / "empty.txt"]) == ""


class TestTruncateForPrompt:
    def test_short_text_untouched(self):
        assert truncate_for_prompt("abc", limit=10) == "abc"

    def test_long_text_gets_note(self):
        text = "x" * 10_000
        result = truncate_for_prompt(text, limit=2_500)
        assert result.startswith("x" * 2_500)
        assert "ĐÃ LƯỢC BỚT 7,500 KÝ TỰ (~3 trang)" in result
