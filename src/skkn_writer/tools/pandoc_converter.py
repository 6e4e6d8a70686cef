"""Markdown -> DOCX export via pandoc, with a python-docx fallback."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from pathlib import Path

import docx

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^\w\-]+", re.UNICODE)


# ---------------------------------------------------------------------------
# Filenames
# ---------------------------------------------------------------------------

def safe_topic(topic: str, max_chars: int = 30) -> str:
    """Filesystem-safe slug of the report topic."""
    slug = _UNSAFE_CHARS.sub("_", topic[:max_chars].strip()).strip("_")
    return slug or "SKKN"


def document_filename(topic: str) -> str:
    return f"SKKN_{safe_topic(topic)}.docx"


def solution_filename(number: int, topic: str) -> str:
    return f"Giai_phap_{number}_{safe_topic(topic)}.docx"


def appendix_filename(topic: str) -> str:
    return f"SKKN_Phuluc_{safe_topic(topic)}.docx"


# ---------------------------------------------------------------------------
# Pandoc availability
# ---------------------------------------------------------------------------

def pandoc_available() -> bool:
    """Check if pandoc is on PATH."""
    return shutil.which("pandoc") is not None


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------

def _header_block(header_fields: dict[str, str] | None) -> str:
    if not header_fields:
        return ""
    lines = [f"**{key}:** {value}  " for key, value in header_fields.items() if value]
    return "\n".join(lines) + "\n\n---\n\n" if lines else ""


def _write_with_python_docx(markdown: str, output_path: Path, title: str | None) -> None:
    document = docx.Document()
    if title:
        document.add_heading(title, level=0)
    for block in markdown.split("\n\n"):
        block = block.strip()
        if not block:
            continue
        heading = re.match(r"^(#{1,6})\s+(.+)$", block)
        if heading and "\n" not in block:
            document.add_heading(heading.group(2), level=min(len(heading.group(1)), 9))
        else:
            document.add_paragraph(block)
    document.save(str(output_path))


def export_docx(
    markdown: str,
    output_path: str | Path,
    *,
    header_fields: dict[str, str] | None = None,
    metadata: dict[str, str] | None = None,
) -> Path:
    """Write *markdown* to a .docx file and return its path.

    Uses pandoc when available; otherwise falls back to a plain python-docx
    rendering with headings and paragraphs.
    """
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    source = _header_block(header_fields) + markdown

    if not pandoc_available():
        logger.warning("pandoc not found, writing a plain python-docx document")
        _write_with_python_docx(source, out, (metadata or {}).get("title"))
        return out

    cmd = ["pandoc", "-f", "markdown", "-t", "docx", "-o", str(out)]
    for key, value in (metadata or {}).items():
        cmd.extend(["--metadata", f"{key}={value}"])

    logger.info("Running: %s", " ".join(cmd))
    result = subprocess.run(cmd, input=source, capture_output=True, text=True, timeout=60)

    if result.returncode != 0:
        logger.error("Pandoc failed: %s", result.stderr)
        raise RuntimeError(f"Pandoc conversion failed:\n{result.stderr}")

    return out
