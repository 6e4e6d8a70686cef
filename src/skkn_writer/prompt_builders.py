"""Pure prompt builders for every generation step.

Each builder is a function of ``StepContext`` only, so the transition table
can be exercised without a network client.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .budget import requirements_prompt, section_page_prompt
from .knowledge import get_guide, get_subject_info, is_higher_ed, terminology
from .models import PageAllocation, SKKNSection, SKKNTemplate, UserInfo
from .template_reducer import template_structure_text
from .tools.doc_reader import truncate_for_prompt

RULE = "━" * 45
OUTLINE_QUOTE_CHARS = 2000
SOLUTION_OUTLINE_QUOTE_CHARS = 3000
PREVIOUS_CONTEXT_CHARS = 2000
REVISION_REFERENCE_CHARS = 5000
REVISION_OLD_CONTENT_CHARS = 3000

OUTLINE_CONFIRM_BOX = """\
┌─────────────────────────────────┐
│ ✅ Đồng ý dàn ý này ?            │
│ ✏️ Bạn có thể CHỈNH SỬA trực   │
│    tiếp dàn ý trước khi tiếp tục │
└─────────────────────────────────┘"""


@dataclass(frozen=True)
class StepContext:
    """Everything a prompt builder may read."""
    user_info: UserInfo
    document: str = ""
    outline: str = ""
    allocation: PageAllocation | None = None
    sections: list[SKKNSection] = field(default_factory=list)
    template: SKKNTemplate | None = None
    max_reference_chars: int = 80000

    @property
    def is_custom_flow(self) -> bool:
        return bool(self.sections)

    @property
    def num_solutions(self) -> int:
        return self.user_info.num_solutions or 3


# ---------------------------------------------------------------------------
# Shared fragments
# ---------------------------------------------------------------------------

def _navigation(step_no: int, title: str) -> str:
    return f"BẮT ĐẦU phản hồi bằng MENU NAVIGATION trạng thái Bước {step_no} ({title} - Đang thực hiện)."


def _requirements(ctx: StepContext) -> str:
    return requirements_prompt(ctx.user_info, ctx.allocation)


def _level_reminder(ctx: StepContext) -> str:
    u = ctx.user_info
    return (
        "⚠️ NHẮC LẠI THÔNG TIN QUAN TRỌNG (BẮT BUỘC BÁM SÁT):\n"
        f"- Cấp học: {u.level}\n"
        f"- Khối lớp / Đối tượng: {u.grade}\n"
        f"- Môn học: {u.subject}\n"
        f"- Trường: {u.school}\n"
        f"- Địa phương: {u.location}\n"
        f"🚫 Mọi ví dụ, số liệu, thuật ngữ PHẢI phù hợp với cấp {u.level}, khối {u.grade}."
    )


def _topic_box(ctx: StepContext) -> str:
    u = ctx.user_info
    return (
        "THÔNG TIN ĐỀ TÀI (BẮT BUỘC BÁM SÁT):\n"
        f'Đề tài: "{u.topic}"\n'
        f"Môn: {u.subject} - Lớp: {u.grade} - Cấp: {u.level}\n"
        f"Trường: {u.school}, {u.location}\n"
        f"SGK: {u.textbook}\n"
        f"CSVC: {u.facilities}"
    )


def _subject_details(subject: str) -> str:
    info = get_subject_info(subject)
    if info is None:
        return ""
    return (
        f"\n  → Nhóm: {info['group']}"
        f"\n  → Đặc trưng: {info['description']}"
        f'\n  → Hãy viết nội dung SKKN bám sát đặc thù lĩnh vực "{info["name"]}" '
        f'thuộc nhóm "{info["group"]}"'
    )


def _user_info_block(ctx: StepContext) -> str:
    u = ctx.user_info
    terms = terminology(u.level)
    default_subjects = f"{terms['learner'].capitalize()} tại đơn vị"
    focus = f" - {u.focus}" if u.focus else ""
    return (
        f"{RULE}\nTHÔNG TIN ĐỀ TÀI:\n{RULE}\n"
        f"• Tên đề tài: {u.topic}\n"
        f"• Môn học / Lĩnh vực: {u.subject}{_subject_details(u.subject)}\n"
        f"• Cấp học: {u.level}\n"
        f"• Khối lớp / Đối tượng: {u.grade}\n"
        f"• Tên {terms['school']}: {u.school}\n"
        f"• Địa điểm: {u.location}\n"
        f"• Điều kiện CSVC: {u.facilities}\n"
        f"• {terms['textbook']}: {u.textbook or 'Không đề cập'}\n"
        f"• Đối tượng nghiên cứu: {u.research_subjects or default_subjects}\n"
        f"• Thời gian thực hiện: {u.timeframe or 'Năm học hiện tại'}\n"
        f"• Đặc thù / Công nghệ / AI: {u.apply_ai}{focus}"
    )


def _reference_block(ctx: StepContext) -> str:
    refs = ctx.user_info.reference_documents
    if not refs:
        return ""
    return (
        f"{RULE}\nTÀI LIỆU THAM KHẢO (DO GIÁO VIÊN CUNG CẤP):\n{RULE}\n"
        "BẮT BUỘC phải bám sát vào nội dung này để viết SKKN phù hợp và chính xác:\n\n"
        f"{truncate_for_prompt(refs, ctx.max_reference_chars)}\n\n"
        "[HẾT TÀI LIỆU THAM KHẢO]"
    )


def _structure_block(ctx: StepContext) -> str:
    if ctx.template is not None:
        return (
            f"{RULE}\n🚨 CẤU TRÚC MẪU SKKN TỪ {ctx.template.name or 'Sở/Phòng GD'} (BẮT BUỘC TUYỆT ĐỐI)\n{RULE}\n"
            "🚫 TUYỆT ĐỐI KHÔNG sử dụng cấu trúc SKKN mặc định.\n"
            "✅ BẮT BUỘC TẠO DÀN Ý VÀ NỘI DUNG THEO ĐÚNG CẤU TRÚC NÀY:\n\n"
            f"{template_structure_text(ctx.template)}\n\n"
            "QUY TẮC:\n"
            "1. Tạo dàn ý theo ĐÚNG thứ tự và tên các phần / mục như trên\n"
            "2. KHÔNG thay đổi tên các phần lớn (level 1)\n"
            "3. Các mục con có thể điều chỉnh nội dung nhưng PHẢI giữ nguyên cấu trúc\n"
            "4. Số lượng giải pháp, tên các phần, thứ tự trình bày PHẢI theo mẫu này\n\n"
            "[HẾT CẤU TRÚC MẪU]"
        )
    raw = ctx.user_info.skkn_template
    if raw:
        return (
            f"{RULE}\n🚨 MẪU YÊU CẦU SKKN TỪ SỞ/PHÒNG GD (BẮT BUỘC TUYỆT ĐỐI)\n{RULE}\n"
            "🚫 KHÔNG sử dụng cấu trúc SKKN mặc định.\n"
            "✅ Viết HOÀN TOÀN theo cấu trúc, trình tự, tên gọi và cách đánh số trong mẫu sau:\n\n"
            f"{raw}\n\n[HẾT MẪU]"
        )
    return ""


def _higher_ed(ctx: StepContext) -> str:
    if not is_higher_ed(ctx.user_info.level):
        return ""
    return (
        f"⚠️ Đây là SKKN dành cho BẬC {ctx.user_info.level.upper()} - KHÔNG PHẢI PHỔ THÔNG.\n"
        + get_guide("higher_ed")
    )


def _join(*parts: str) -> str:
    return "\n\n".join(p.strip("\n") for p in parts if p and p.strip())


# ---------------------------------------------------------------------------
# Outline
# ---------------------------------------------------------------------------

def build_outline_prompt(ctx: StepContext) -> str:
    return _join(
        get_guide("base_persona"),
        _higher_ed(ctx),
        "NHIỆM VỤ CỦA BẠN:\n"
        "Lập DÀN Ý CHI TIẾT cho một đề tài SKKN dựa trên thông tin tôi cung cấp. "
        "Dàn ý phải đảm bảo 4 tiêu chí: Tính MỚI, Tính KHOA HỌC, Tính KHẢ THI, Tính HIỆU QUẢ.",
        _navigation(2, "Lập Dàn Ý"),
        get_guide("outline"),
        _user_info_block(ctx),
        _reference_block(ctx),
        _structure_block(ctx),
        _requirements(ctx),
        f"Kết thúc phần dàn ý, hãy xuống dòng và hiển thị hộp thoại:\n{OUTLINE_CONFIRM_BOX}",
    )


def build_outline_revision_prompt(feedback: str) -> str:
    return _join(
        _navigation(2, "Lập Dàn Ý"),
        f'Dựa trên dàn ý đã lập, người dùng có yêu cầu chỉnh sửa sau:\n"{feedback}"',
        "Hãy viết lại TOÀN BỘ Dàn ý chi tiết mới đã được cập nhật theo yêu cầu trên. "
        "Vẫn đảm bảo cấu trúc chuẩn SKKN.",
        get_guide("format_rules"),
        f"Kết thúc phần dàn ý, hãy xuống dòng và hiển thị hộp thoại:\n{OUTLINE_CONFIRM_BOX}",
    )


# ---------------------------------------------------------------------------
# Standard flow
# ---------------------------------------------------------------------------

def build_part_i_ii_prompt(ctx: StepContext) -> str:
    return _join(
        _navigation(3, "Viết Phần I & II"),
        "Đây là bản DÀN Ý CHÍNH THỨC mà tôi đã chốt (có thể đã chỉnh sửa trực tiếp). "
        "Hãy DÙNG CHÍNH XÁC NỘI DUNG NÀY làm cơ sở, không tự ý thay đổi cấu trúc:\n\n"
        f"--- BẮT ĐẦU DÀN Ý CHÍNH THỨC ---\n{ctx.document}\n--- KẾT THÚC DÀN Ý CHÍNH THỨC ---",
        "NHIỆM VỤ TIẾP THEO: Viết chi tiết PHẦN I (Đặt vấn đề) và PHẦN II (Cơ sở lý luận).",
        get_guide("intro"),
        get_guide("theory"),
        get_guide("format_rules"),
        _level_reminder(ctx),
        _requirements(ctx),
        section_page_prompt("Phần I (Đặt vấn đề) + Phần II (Cơ sở lý luận)", "part_i_ii", ctx.allocation),
    )


def build_part_iii_prompt(ctx: StepContext) -> str:
    u = ctx.user_info
    return _join(
        _navigation(4, "Viết Phần III"),
        get_guide("reality"),
        "Tiếp tục: Viết chi tiết PHẦN III (Thực trạng vấn đề).\n"
        "Tạo bảng số liệu khảo sát giả định logic phù hợp với đối tượng nghiên cứu là: "
        f"{u.research_subjects or terminology(u.level)['learner']}.\n"
        f"Phân tích nguyên nhân và thực trạng tại {u.school}, {u.location} "
        f"và điều kiện CSVC thực tế: {u.facilities}.",
        get_guide("format_rules"),
        _level_reminder(ctx),
        _requirements(ctx),
        section_page_prompt("Phần III (Thực trạng)", "part_iii", ctx.allocation),
    )


def build_solution_prompt(number: int, ctx: StepContext) -> str:
    total = ctx.num_solutions
    first = (
        "Trên cơ sở phân tích thực trạng, bắt đầu viết PHẦN IV (Các giải pháp). "
        "Mở đầu phần này bằng tiêu đề \"4. CÁC GIẢI PHÁP THỰC HIỆN\".\n"
        if number == 1 else ""
    )
    return _join(
        _navigation(4 + number, f"Viết Giải pháp {number}/{total}"),
        _topic_box(ctx),
        f"{first}Viết chi tiết GIẢI PHÁP {number} (trong tổng số {total} giải pháp).",
        "DÀN Ý ĐÃ DUYỆT (BẮT BUỘC BÁM SÁT):\n"
        f"{ctx.document[:SOLUTION_OUTLINE_QUOTE_CHARS]}\n\n"
        "⚠️ Tên giải pháp, cấu trúc PHẢI TRÙNG KHỚP với dàn ý trên.",
        get_guide("solution"),
        get_guide("natural_writing"),
        get_guide("format_rules"),
        _requirements(ctx),
        section_page_prompt(f"Giải pháp {number}", "per_solution", ctx.allocation),
    )


def solution_builder(number: int):
    """Bind *number* into a single-argument prompt builder."""
    def _build(ctx: StepContext) -> str:
        return build_solution_prompt(number, ctx)
    _build.__name__ = f"build_solution_{number}_prompt"
    return _build


def build_part_v_vi_prompt(ctx: StepContext) -> str:
    return _join(
        _navigation(5 + ctx.num_solutions, "Viết Phần V & VI"),
        "Các giải pháp đã được duyệt. Tiếp tục viết PHẦN V (Kết quả đạt được) "
        "và PHẦN VI (Kết luận và kiến nghị), kèm TÀI LIỆU THAM KHẢO.",
        get_guide("result"),
        get_guide("conclusion"),
        get_guide("legal_references"),
        get_guide("transition_phrases"),
        get_guide("format_rules"),
        _level_reminder(ctx),
        _requirements(ctx),
        section_page_prompt("Phần V (Kết quả) + Phần VI (Kết luận)", "part_v_vi", ctx.allocation),
    )


def build_completion_prompt(ctx: StepContext) -> str:
    return _join(
        "✅ SKKN ĐÃ HOÀN THÀNH!",
        "Hãy xác nhận ngắn gọn rằng toàn bộ nội dung chính đã được viết xong, "
        "đánh dấu tất cả các bước trong MENU NAVIGATION là ✅, và nhắc người dùng "
        "có thể xuất file Word hoặc tạo PHỤ LỤC.",
    )


# ---------------------------------------------------------------------------
# Custom template flow
# ---------------------------------------------------------------------------

def build_custom_section_prompt(index: int, ctx: StepContext) -> str:
    section = ctx.sections[index]
    guidance = section.suggested_content or "Không có hướng dẫn phụ"
    total = ctx.num_solutions

    if index == 0:
        return _join(
            _navigation(3, f"Viết {section.title}"),
            f"Đây là bản DÀN Ý CHÍNH THỨC mà tôi đã chốt:\n---\n{ctx.document}\n---",
            f"NHIỆM VỤ TIẾP THEO: Viết chi tiết phần đầu tiên theo cấu trúc mẫu: **{section.title}**.",
            f"⚠️ BÁM SÁT MẪU YÊU CẦU: Phần này trong mẫu gốc được định nghĩa là: {guidance}",
            get_guide("solution_mode"),
            get_guide("format_rules"),
            _requirements(ctx),
        )

    previous = ctx.document[-PREVIOUS_CONTEXT_CHARS:]
    return _join(
        _navigation(index + 3, f"Viết {section.title}"),
        _topic_box(ctx),
        f"Tiếp tục viết chi tiết nội dung phần tiếp theo của SKKN: **{section.title}**.\n"
        f"(Hướng dẫn từ mẫu gốc: {guidance})",
        get_guide("solution_mode"),
        f"⚠️ SỐ LƯỢNG GIẢI PHÁP ĐÃ CHỌN: {total} GIẢI PHÁP\n"
        f"Nếu phần này mô tả giải pháp/biện pháp, BẮT BUỘC viết ĐỦ {total} giải pháp, "
        "mỗi giải pháp có NỘI DUNG VÀ QUY TRÌNH chi tiết, VÍ DỤ MINH HỌA cụ thể.",
        "DÀN Ý ĐÃ DUYỆT (BẮT BUỘC BÁM SÁT):\n"
        f"{ctx.outline[:OUTLINE_QUOTE_CHARS]}\n\n"
        "⚠️ Tên giải pháp, cấu trúc PHẢI TRÙNG KHỚP với dàn ý trên.",
        f"ĐOẠN CUỐI ĐÃ VIẾT (để nối mạch):\n{previous}" if previous else "",
        get_guide("natural_writing"),
        get_guide("format_rules"),
        _requirements(ctx),
    )


def custom_section_builder(index: int):
    def _build(ctx: StepContext) -> str:
        return build_custom_section_prompt(index, ctx)
    _build.__name__ = f"build_custom_section_{index}_prompt"
    return _build


def build_custom_completion_prompt(ctx: StepContext) -> str:
    return _join(
        "✅ SKKN ĐÃ HOÀN THÀNH!",
        "Bạn đã viết xong toàn bộ nội dung chính của SKKN theo đúng cấu trúc mẫu.",
        "📌 BÂY GIỜ BẠN CÓ THỂ:\n1. Xuất file Word để chỉnh sửa chi tiết\n2. Tạo PHỤ LỤC chi tiết",
    )


# ---------------------------------------------------------------------------
# Revision and appendix
# ---------------------------------------------------------------------------

def build_solution_revision_prompt(
    number: int,
    feedback: str,
    old_content: str,
    reference_documents: str = "",
) -> str:
    reference = ""
    if reference_documents:
        reference = (
            "TÀI LIỆU THAM KHẢO (trích):\n"
            f"{reference_documents[:REVISION_REFERENCE_CHARS]}"
        )
    return _join(
        f"🔄 YÊU CẦU VIẾT LẠI GIẢI PHÁP {number}",
        f'Người dùng yêu cầu chỉnh sửa như sau:\n"{feedback}"',
        reference,
        f"NỘI DUNG CŨ CỦA GIẢI PHÁP {number}:\n{old_content[:REVISION_OLD_CONTENT_CHARS]}",
        f"Hãy viết lại TOÀN BỘ GIẢI PHÁP {number} theo yêu cầu trên, giữ nguyên cấu trúc "
        f"(mục tiêu, quy trình, ví dụ minh họa) và kết thúc bằng dòng \"KẾT THÚC GIẢI PHÁP {number}\".",
        get_guide("natural_writing"),
        get_guide("format_rules"),
    )


def build_appendix_prompt(ctx: StepContext) -> str:
    u = ctx.user_info
    return _join(
        get_guide("base_persona"),
        f'Dựa trên SKKN "{u.topic}" (môn {u.subject}, lớp {u.grade}, cấp {u.level}, '
        f"trường {u.school}), hãy soạn PHỤ LỤC chi tiết, dùng được ngay.",
        get_guide("appendix"),
        "NỘI DUNG SKKN ĐÃ VIẾT (ĐỌC KỸ ĐỂ TẠO PHỤ LỤC PHÙ HỢP):\n"
        f"{truncate_for_prompt(ctx.document, ctx.max_reference_chars)}",
        "Phiếu khảo sát và đề kiểm tra phải khớp với các tiêu chí và số liệu trong phần Thực trạng "
        "và Kết quả.",
        get_guide("format_rules"),
    )
