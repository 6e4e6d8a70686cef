"""Deterministic tools: document text extraction and DOCX export."""

from .doc_reader import read_document, read_reference_documents, truncate_for_prompt
from .pandoc_converter import export_docx, pandoc_available

__all__ = [
    "read_document",
    "read_reference_documents",
    "truncate_for_prompt",
    "export_docx",
    "pandoc_available",
]
