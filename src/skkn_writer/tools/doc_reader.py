"""Extract plain text from uploaded reference and template documents."""

from __future__ import annotations

import logging
from pathlib import Path

import docx
import fitz  # PyMuPDF

from ..budget import CHARS_PER_PAGE

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".pdf", ".docx", ".txt", ".md")
MAX_REFERENCE_CHARS = 80000


def list_reference_files(paths: list[str | Path]) -> list[Path]:
    """Expand files and directories into supported documents, sorted by name."""
    files: list[Path] = []
    for raw in paths:
        p = Path(raw)
        if p.is_dir():
            files.extend(sorted(f for f in p.rglob("*") if f.suffix.lower() in SUPPORTED_SUFFIXES))
        elif p.suffix.lower() in SUPPORTED_SUFFIXES:
            files.append(p)
        else:
            logger.warning("Skipping unsupported file: %s", p)
    return files


def _read_pdf(path: Path) -> str:
    parts = []
    with fitz.open(path) as doc:
        for page in doc:
            parts.append(page.get_text("text") or "")
    return "\n".join(parts)


def _read_docx(path: Path) -> str:
    document = docx.Document(str(path))
    return "\n".join(p.text for p in document.paragraphs)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return path.read_text(encoding="utf-16")


def read_document(path: str | Path) -> str:
    """Read a PDF, DOCX, TXT or Markdown file and return its text."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Document not found: {p}")

    suffix = p.suffix.lower()
    if suffix == ".pdf":
        text = _read_pdf(p)
    elif suffix == ".docx":
        text = _read_docx(p)
    elif suffix in (".txt", ".md"):
        text = _read_text(p)
    else:
        raise ValueError(f"Unsupported document type: {suffix!r}. Use one of {SUPPORTED_SUFFIXES}")

    logger.debug("Read %d chars from %s", len(text), p.name)
    return text.strip()


def read_reference_documents(paths: list[str | Path]) -> str:
    """Concatenate all reference documents, each under a file header."""
    sections: list[str] = []
    for f in list_reference_files(paths):
        text = read_document(f)
        if text:
            sections.append(f"=== TÀI LIỆU: {f.name} ===\n{text}")
    return "\n\n".join(sections)


def truncate_for_prompt(text: str, limit: int = MAX_REFERENCE_CHARS) -> str:
    """Cut *text* to *limit* chars, noting how much was dropped."""
    if len(text) <= limit:
        return text
    removed = len(text) - limit
    pages = round(removed / CHARS_PER_PAGE)
    return (
        text[:limit]
        + f"\n\n[... ĐÃ LƯỢC BỚT {removed:,} KÝ TỰ (~{pages} trang) DO VƯỢT GIỚI HẠN ...]"
    )
