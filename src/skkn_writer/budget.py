"""Page budget allocation across the report parts.

The allocation is advisory: it is rendered into every generation prompt but
never enforced against what the model actually writes.
"""

from __future__ import annotations

import math
from typing import Literal

from .models import PageAllocation, PartBudget, UserInfo

WORDS_PER_PAGE = 350   # A4, 13pt, 1.5 line spacing
CHARS_PER_PAGE = 2500
DEFAULT_NUM_SOLUTIONS = 3

PartKey = Literal["part_i_ii", "part_iii", "part_iv", "per_solution", "part_v_vi"]


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _part(pages: int) -> PartBudget:
    return PartBudget(pages=pages, words=pages * WORDS_PER_PAGE, chars=pages * CHARS_PER_PAGE)


def allocate_pages(page_limit: int | None, num_solutions: int | None = None) -> PageAllocation | None:
    """Split *page_limit* pages across parts I-II, III, IV (solutions) and V-VI.

    Returns ``None`` when no page limit is set. Part IV shrinks toward its
    ``3 * num_solutions`` floor when the residual floor of part V-VI would
    push the total above the limit.
    """
    if not page_limit or page_limit < 1:
        return None

    pages = int(page_limit)
    solutions = max(1, min(5, num_solutions or DEFAULT_NUM_SOLUTIONS))

    part_i_ii = max(1, _round_half_up(pages * 0.05))
    part_iii = max(1, _round_half_up(pages * 0.05))
    part_iv_floor = 3 * solutions
    part_iv = max(part_iv_floor, _round_half_up(pages * 0.85))
    part_v_vi = max(1, pages - part_i_ii - part_iii - part_iv)

    excess = part_i_ii + part_iii + part_iv + part_v_vi - pages
    if excess > 0:
        part_iv = max(part_iv_floor, part_iv - excess)

    per_solution = max(2, part_iv // solutions)

    return PageAllocation(
        total_pages=pages,
        num_solutions=solutions,
        words_per_page=WORDS_PER_PAGE,
        chars_per_page=CHARS_PER_PAGE,
        part_i_ii=_part(part_i_ii),
        part_iii=_part(part_iii),
        part_iv=_part(part_iv),
        per_solution=_part(per_solution),
        part_v_vi=_part(part_v_vi),
    )


def allocation_for(user_info: UserInfo) -> PageAllocation | None:
    return allocate_pages(user_info.page_limit, user_info.num_solutions)


# ---------------------------------------------------------------------------
# Prompt text
# ---------------------------------------------------------------------------

def _fmt(n: int) -> str:
    return f"{n:,}"


def section_page_prompt(section_name: str, part: PartKey, allocation: PageAllocation | None) -> str:
    """Page target for the single part being written, or ``""`` without a limit."""
    if allocation is None:
        return ""
    budget: PartBudget = getattr(allocation, part)
    ceiling = math.ceil(budget.pages * 1.15)
    floor = max(1, math.floor(budget.pages * 0.85))
    return (
        "\n🚨 GIỚI HẠN SỐ TRANG CHO PHẦN NÀY (BẮT BUỘC):\n"
        f"📌 {section_name}: PHẢI viết khoảng {budget.pages} TRANG "
        f"(≈ {_fmt(budget.words)} từ ≈ {_fmt(budget.chars)} ký tự)\n"
        f"⚠️ Trong tổng {allocation.total_pages} trang SKKN, phần này chiếm {budget.pages} trang.\n"
        f"🚫 KHÔNG viết quá {ceiling} trang và KHÔNG viết dưới {floor} trang.\n"
        "✅ Viết CÔ ĐỌNG, SÚC TÍCH nhưng ĐẦY ĐỦ NỘI DUNG. Ưu tiên bảng biểu để tiết kiệm không gian.\n"
    )


def allocation_table(allocation: PageAllocation) -> str:
    """Render the allocation as a fixed-width text table."""
    rows = [
        ("Phần I & II", allocation.part_i_ii),
        ("Phần III", allocation.part_iii),
        (f"Phần IV ({allocation.num_solutions} GP)", allocation.part_iv),
        ("  → Mỗi giải pháp", allocation.per_solution),
        ("Phần V & VI + KL", allocation.part_v_vi),
    ]
    lines = [
        f"{'PHẦN':<22}│ {'SỐ TRANG':>9} │ {'SỐ TỪ':>10} │ {'SỐ KÝ TỰ':>10}",
        "─" * 60,
    ]
    for name, budget in rows:
        lines.append(
            f"{name:<22}│ {budget.pages:>9} │ {_fmt(budget.words):>10} │ {_fmt(budget.chars):>10}"
        )
    return "\n".join(lines)


def requirements_prompt(user_info: UserInfo, allocation: PageAllocation | None = None) -> str:
    """Confirmed special requirements block injected into every prompt.

    Empty unless the user confirmed their requirements.
    """
    if not user_info.requirements_confirmed:
        return ""

    if allocation is None:
        allocation = allocation_for(user_info)

    requirements: list[str] = []

    if allocation is not None:
        underwrite = max(1, math.floor(allocation.total_pages * 0.8))
        requirements.append(
            "🚨 GIỚI HẠN SỐ TRANG - BẮT BUỘC TUYỆT ĐỐI\n"
            f"📌 TỔNG SỐ TRANG YÊU CẦU: {allocation.total_pages} TRANG (không tính Dàn ý và Phụ lục)\n"
            f"📐 1 trang A4 ≈ {allocation.words_per_page} từ ≈ {allocation.chars_per_page} ký tự; "
            f"tổng ≈ {_fmt(allocation.total_words)} từ ≈ {_fmt(allocation.total_chars)} ký tự\n\n"
            "📊 PHÂN BỔ CHI TIẾT TỪNG PHẦN:\n"
            f"{allocation_table(allocation)}\n\n"
            "⚠️ QUY TẮC KIỂM SOÁT SỐ TRANG:\n"
            "1. Tính số từ cần viết cho phần hiện tại theo bảng phân bổ.\n"
            "2. Dừng khi đạt đủ số từ phân bổ; vượt quá 15% thì cắt bớt.\n"
            "3. Mỗi đoạn văn tối đa 3-4 câu, không lặp ý.\n"
            "4. Ưu tiên bảng biểu để tiết kiệm không gian.\n"
            f"🚫 Vượt quá {allocation.total_pages} trang hoặc viết dưới {underwrite} trang "
            "đều KHÔNG đạt yêu cầu."
        )

    if user_info.include_practical_examples:
        requirements.append(
            "📊 YÊU CẦU THÊM BÀI TOÁN THỰC TẾ, VÍ DỤ MINH HỌA:\n"
            "- Mỗi giải pháp PHẢI có ít nhất 2-3 ví dụ thực tế cụ thể\n"
            "- Bài toán thực tế gắn với đời sống, công việc, nghề nghiệp\n"
            f"- Ưu tiên các ví dụ từ SGK {user_info.textbook or 'hiện hành'}"
        )

    if user_info.include_statistics:
        requirements.append(
            "📈 YÊU CẦU BỔ SUNG BẢNG BIỂU, SỐ LIỆU THỐNG KÊ:\n"
            "- Mỗi phần quan trọng PHẢI có bảng biểu hoặc số liệu minh họa\n"
            "- Dùng số liệu lẻ tự nhiên (42.3%, 67.8%) thay vì số tròn\n"
            "- Bảng số liệu theo format Markdown chuẩn, số liệu nhất quán toàn bài"
        )

    if user_info.special_requirements.strip():
        requirements.append(
            "✏️ YÊU CẦU BỔ SUNG TỪ NGƯỜI DÙNG:\n"
            f"{user_info.special_requirements}\n"
            "Hãy áp dụng CHÍNH XÁC các yêu cầu trên vào phần đang viết!"
        )

    if not requirements:
        return ""

    rule = "━" * 45
    return (
        f"\n{rule}\n⚠️ CÁC YÊU CẦU ĐẶC BIỆT ĐÃ XÁC NHẬN (BẮT BUỘC TUÂN THỦ):\n{rule}\n"
        + "\n\n".join(requirements)
        + f"\n{rule}\n"
    )
