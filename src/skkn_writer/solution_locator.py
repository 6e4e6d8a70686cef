"""Best-effort extraction of one solution's write-up from the full document.

The document is free-form model output, so every lookup here is a heuristic.
``locate_solution`` never raises: when nothing plausible is found it returns
a placeholder naming the solution.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

DESCRIPTION_MARKER = "📋 MÔ TẢ SÁNG KIẾN"
END_MARKER = "KẾT THÚC GIẢI PHÁP"
HEAVY_SEPARATOR = "━" * 21
LIGHT_SEPARATOR = "━" * 11

MIN_CONTENT_CHARS = 500
MIN_PLAUSIBLE_CHARS = 100
CUE_LOOKAHEAD = 1500
END_SEPARATOR_WINDOW = 500

_SECTION_PATTERNS = [
    re.compile(r"4\.\s*CÁC GIẢI PHÁP", re.IGNORECASE),
    re.compile(r"PHẦN\s*(?:IV|4)[:\s]*.*GIẢI PHÁP", re.IGNORECASE),
    re.compile(r"IV\.\s*CÁC GIẢI PHÁP", re.IGNORECASE),
    re.compile(r"4\.\s*GIẢI PHÁP", re.IGNORECASE),
]

_STRUCTURE_CUE = re.compile(
    r"(?:1\.\s*MỤC TIÊU|\*\*1\.|1\.1\.|CƠ SỞ KHOA HỌC|NỘI DUNG VÀ|QUY TRÌNH|"
    r"Bước\s*1|VÍ DỤ MINH HỌA|ĐIỀU KIỆN THỰC HIỆN)",
    re.IGNORECASE,
)
_RESULTS_HEADING = re.compile(r"(?:5\.\s*KẾT QUẢ|Phần\s*V\b|PHẦN\s*V\b)")
_BLOCK_SPLIT = re.compile(r"(?:━{10,}|-{5,})")
_BLOCK_CUE = re.compile(r"(?:MỤC TIÊU|QUY TRÌNH|Bước\s*1)", re.IGNORECASE)


def placeholder(number: int) -> str:
    return (
        f"⚠️ Không tìm thấy nội dung chi tiết của GIẢI PHÁP {number}.\n\n"
        "Vui lòng kiểm tra lại hoặc yêu cầu AI viết lại giải pháp này."
    )


def _detail_patterns(number: int) -> list[re.Pattern[str]]:
    return [
        re.compile(rf"━+\s*\n?\s*(?:📋\s*)?GIẢI PHÁP\s*{number}\s*[-–:]", re.IGNORECASE),
        re.compile(rf"4\.{number}[.:\s]+GIẢI PHÁP\s*{number}", re.IGNORECASE),
        re.compile(rf"GIẢI PHÁP\s*{number}\s*[:–-]\s*[^\n]{{10,}}", re.IGNORECASE),
    ]


def find_solutions_region(document: str) -> int:
    """Offset of the 'solutions' part heading, or -1."""
    marker = document.find(DESCRIPTION_MARKER)
    fallback = -1
    for pattern in _SECTION_PATTERNS:
        for m in pattern.finditer(document):
            if marker == -1 or m.start() > marker:
                return m.start()
            if fallback == -1:
                fallback = m.start()
    return fallback


def _find_start(document: str, number: int, region_start: int) -> int:
    search_from = max(region_start, 0)

    for pattern in _detail_patterns(number):
        m = pattern.search(document, search_from)
        if m:
            return m.start()

    # Outline mentions are short; the detailed write-up carries structural cues.
    needle = f"GIẢI PHÁP {number} "
    pos = document.find(needle, search_from)
    while pos != -1:
        lookahead = document[pos:pos + CUE_LOOKAHEAD]
        if len(lookahead) > MIN_CONTENT_CHARS and _STRUCTURE_CUE.search(lookahead):
            return pos
        pos = document.find(needle, pos + 1)
    return -1


def _find_end(document: str, number: int, start: int) -> int:
    end_idx = document.find(END_MARKER, start)
    if end_idx != -1:
        sep = document.find(HEAVY_SEPARATOR, end_idx + 20)
        if sep != -1 and sep - end_idx < END_SEPARATOR_WINDOW:
            return sep + len(HEAVY_SEPARATOR)
        paragraph = document.find("\n\n", end_idx)
        return paragraph + 1 if paragraph != -1 else len(document)

    minimum = start + MIN_CONTENT_CHARS
    candidates = [len(document)]

    next_marker = document.find(f"GIẢI PHÁP {number + 1} ", start + 100)
    if next_marker > minimum:
        candidates.append(next_marker)

    m = _RESULTS_HEADING.search(document, minimum)
    if m:
        candidates.append(m.start())

    sep = document.find(LIGHT_SEPARATOR, minimum)
    if sep > minimum:
        candidates.append(sep)

    return min(candidates)


def _scan_blocks(document: str, number: int) -> str:
    needle = f"GIẢI PHÁP {number} "
    for block in reversed(_BLOCK_SPLIT.split(document)):
        if needle in block and len(block) > MIN_CONTENT_CHARS and _BLOCK_CUE.search(block):
            return block.strip()
    return ""


def locate_solution(document: str, number: int) -> str:
    """Return the write-up of solution *number*, or a placeholder."""
    try:
        content = ""
        region = find_solutions_region(document)
        start = _find_start(document, number, region)
        if start == -1 and region != -1:
            start = _find_start(document, number, 0)
        if start != -1:
            content = document[start:_find_end(document, number, start)].strip()

        if len(content) < MIN_CONTENT_CHARS:
            content = _scan_blocks(document, number) or content

        if len(content) < MIN_PLAUSIBLE_CHARS:
            logger.warning("Solution %d not found in document (%d chars)", number, len(document))
            return placeholder(number)
        return content
    except Exception:
        logger.exception("Solution locator failed for solution %d", number)
        return placeholder(number)
