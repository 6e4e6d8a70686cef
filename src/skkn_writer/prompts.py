"""Interactive Rich prompts for missing user info."""

from __future__ import annotations

from rich.console import Console
from rich.prompt import Confirm, IntPrompt, Prompt

from .knowledge import HIGHER_ED_LEVELS, search_subjects

console = Console()

LEVELS = ["Mầm non", "Tiểu học", "THCS", "THPT", "GDTX", *HIGHER_ED_LEVELS]


def prompt_topic() -> str:
    """Prompt for the report title."""
    while True:
        topic = Prompt.ask("\n[bold]Tên đề tài SKKN[/]").strip()
        if topic:
            return topic
        console.print("[yellow]Tên đề tài không được để trống.[/]")


def prompt_subject() -> str:
    """Prompt for the subject, offering catalogue matches."""
    query = Prompt.ask("\n[bold]Môn học / lĩnh vực[/] (gõ từ khoá để tìm)").strip()
    matches = search_subjects(query)[:10] if query else []
    if not matches:
        return query
    for i, s in enumerate(matches, 1):
        console.print(f"  {i}. {s['name']} [dim]({s['group']})[/]")
    choice = Prompt.ask("Chọn số hoặc giữ nguyên", default=query)
    if choice.isdigit() and 1 <= int(choice) <= len(matches):
        return matches[int(choice) - 1]["name"]
    return choice


def prompt_level() -> str:
    console.print("\n[bold]Cấp học:[/]")
    for i, level in enumerate(LEVELS, 1):
        console.print(f"  {i}. {level}")
    while True:
        choice = Prompt.ask("Số hoặc tên cấp học", default="4")
        if choice.isdigit() and 1 <= int(choice) <= len(LEVELS):
            return LEVELS[int(choice) - 1]
        if choice in LEVELS:
            return choice
        console.print(f"[yellow]Chọn 1-{len(LEVELS)} hoặc nhập đúng tên cấp học.[/]")


def prompt_page_limit() -> int | None:
    raw = Prompt.ask("\n[bold]Giới hạn số trang[/]", default="none")
    if raw.lower() in ("none", ""):
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def prompt_num_solutions(default: int = 3) -> int:
    while True:
        value = IntPrompt.ask("\n[bold]Số giải pháp[/] (1-5)", default=default)
        if 1 <= value <= 5:
            return value
        console.print("[yellow]Số giải pháp phải từ 1 đến 5.[/]")


def run_interactive_prompts(info: dict) -> dict:
    """Fill missing user info fields interactively.

    Modifies and returns *info* with user-provided values.
    """
    console.print("\n[bold blue]Thông tin SKKN[/]")
    console.print("Điền các trường còn thiếu (Enter để dùng mặc định).\n")

    if not info.get("topic"):
        info["topic"] = prompt_topic()
    if not info.get("subject"):
        info["subject"] = prompt_subject()
    if not info.get("level"):
        info["level"] = prompt_level()
    for field, label in (
        ("grade", "Khối lớp / đối tượng"),
        ("school", "Tên trường"),
        ("location", "Địa điểm (huyện, tỉnh)"),
        ("facilities", "Điều kiện cơ sở vật chất"),
    ):
        if not info.get(field):
            info[field] = Prompt.ask(f"[bold]{label}[/]", default="")

    if info.get("page_limit") is None:
        info["page_limit"] = prompt_page_limit()
    if not info.get("num_solutions"):
        info["num_solutions"] = prompt_num_solutions()

    if not info.get("requirements_confirmed"):
        wants = Confirm.ask("\n[bold]Thêm yêu cầu đặc biệt (số liệu, ví dụ thực tế)?[/]", default=False)
        if wants:
            info["include_practical_examples"] = Confirm.ask("  Bổ sung ví dụ thực tế?", default=True)
            info["include_statistics"] = Confirm.ask("  Bổ sung bảng số liệu thống kê?", default=True)
            info["special_requirements"] = Prompt.ask("  Yêu cầu khác", default="")
            info["requirements_confirmed"] = True

    return info
