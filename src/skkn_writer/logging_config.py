"""Rich console setup and workflow progress callbacks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

if TYPE_CHECKING:
    from .models import ErrorDecision, ReviewResult, SessionData
    from .retry import ErrorInfo

console = Console()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def setup_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logger with Rich handler."""
    level = logging.DEBUG if verbose else (logging.ERROR if quiet else logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


# ---------------------------------------------------------------------------
# Pipeline callbacks protocol
# ---------------------------------------------------------------------------


class PipelineCallbacks(Protocol):
    """Protocol for workflow progress reporting and user decisions."""

    def on_phase_start(self, phase: str, description: str) -> None: ...
    def on_phase_end(self, phase: str, success: bool) -> None: ...
    def on_step_start(self, step: int, label: str) -> None: ...
    def on_step_end(self, step: int, label: str, chars: int) -> None: ...
    def on_chunk(self, text: str) -> None: ...
    def on_outline_review(self, outline: str, round_num: int, max_rounds: int) -> ReviewResult: ...
    def on_solution_review(self, number: int, content: str) -> ReviewResult: ...
    def on_restore_offer(self, data: SessionData) -> bool: ...
    def on_generation_error(self, info: ErrorInfo, can_retry: bool) -> ErrorDecision: ...
    def on_warning(self, message: str) -> None: ...
    def on_error(self, message: str) -> None: ...


def _read_feedback() -> str:
    console.print("Nhập góp ý chỉnh sửa (dòng trống để kết thúc):")
    lines: list[str] = []
    while True:
        line = console.input("")
        if not line:
            break
        lines.append(line)
    return "\n".join(lines)


def _ask_review(prompt: str) -> ReviewResult:
    from .models import ReviewAction, ReviewResult

    while True:
        choice = console.input(prompt).strip().lower()
        if choice in ("a", "approve"):
            return ReviewResult(action=ReviewAction.APPROVE)
        elif choice in ("q", "quit"):
            return ReviewResult(action=ReviewAction.ABORT)
        elif choice in ("r", "revise"):
            feedback = _read_feedback()
            if feedback.strip():
                return ReviewResult(action=ReviewAction.REVISE, feedback=feedback)
            console.print("[yellow]Góp ý trống, hãy nhập lại.[/]")
        else:
            console.print("[yellow]Please enter 'a', 'r', or 'q'.[/]")


class RichCallbacks:
    """Rich-based implementation of PipelineCallbacks."""

    def __init__(self, *, interactive: bool = False, show_stream: bool = False) -> None:
        self.interactive = interactive
        self.show_stream = show_stream
        self._streamed = 0

    def on_phase_start(self, phase: str, description: str) -> None:
        console.rule(f"[bold blue]{phase}[/] - {description}")

    def on_phase_end(self, phase: str, success: bool) -> None:
        status = "[green]OK[/]" if success else "[red]FAILED[/]"
        console.print(f"  Phase {phase}: {status}")

    def on_step_start(self, step: int, label: str) -> None:
        self._streamed = 0
        console.print(f"  [dim]Đang viết:[/] {label} [dim](bước {step})[/]")

    def on_step_end(self, step: int, label: str, chars: int) -> None:
        if self.show_stream:
            console.print()
        console.print(f"  [dim]Xong:[/] {label} [dim]({chars:,} ký tự)[/]")

    def on_chunk(self, text: str) -> None:
        self._streamed += len(text)
        if self.show_stream:
            console.out(text, end="", highlight=False)

    def on_outline_review(self, outline: str, round_num: int, max_rounds: int) -> ReviewResult:
        from .models import ReviewResult

        if not self.interactive:
            return ReviewResult()

        console.print()
        console.print(Panel(outline, title="Dàn ý", border_style="cyan"))
        console.print(f"  Vòng chỉnh sửa {round_num}/{max_rounds}")
        return _ask_review("[bold]\\[a]pprove / \\[r]evise / \\[q]uit:[/] ")

    def on_solution_review(self, number: int, content: str) -> ReviewResult:
        from .models import ReviewResult

        if not self.interactive:
            return ReviewResult()

        console.print()
        console.print(Panel(content, title=f"Giải pháp {number}", border_style="green"))
        return _ask_review(f"[bold]Giải pháp {number}: \\[a]pprove / \\[r]evise / \\[q]uit:[/] ")

    def on_restore_offer(self, data: SessionData) -> bool:
        table = Table(title="Phiên làm việc đã lưu", show_lines=True)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("Đề tài", data.user_info.topic or "-")
        table.add_row("Bước", str(data.state.step))
        table.add_row("Độ dài", f"{len(data.state.full_document):,} ký tự")
        table.add_row("Lưu lúc", data.saved_at)
        console.print()
        console.print(table)

        if not self.interactive:
            console.print("  [dim]Non-interactive run: starting a new session.[/]")
            return False
        while True:
            choice = console.input("[bold]Khôi phục phiên? \\[y]es / \\[n]o:[/] ").strip().lower()
            if choice in ("y", "yes"):
                return True
            if choice in ("n", "no"):
                return False
            console.print("[yellow]Please enter 'y' or 'n'.[/]")

    def on_generation_error(self, info: ErrorInfo, can_retry: bool) -> ErrorDecision:
        from .models import ErrorAction, ErrorDecision

        body = f"{info.message}\n\n[bold]Gợi ý khắc phục:[/]\n" + "\n".join(
            f"  • {s}" for s in info.suggestions
        )
        console.print(Panel(body, title=f"[bold red]{info.title}[/]", border_style="red"))

        if not self.interactive:
            return ErrorDecision(action=ErrorAction.ABANDON)

        options = "\\[k] đổi API key / \\[q] dừng"
        if can_retry:
            options = "\\[t] thử lại (đổi key) / " + options
        while True:
            choice = console.input(f"[bold]{options}:[/] ").strip().lower()
            if choice == "t" and can_retry:
                return ErrorDecision(action=ErrorAction.RETRY)
            if choice == "k":
                key = console.input("API key mới: ", password=True).strip()
                if key:
                    return ErrorDecision(action=ErrorAction.CHANGE_KEY, api_key=key)
            elif choice == "q":
                return ErrorDecision(action=ErrorAction.ABANDON)
            else:
                console.print("[yellow]Lựa chọn không hợp lệ.[/]")

    def on_warning(self, message: str) -> None:
        console.print(f"  [yellow]WARNING:[/] {message}")

    def on_error(self, message: str) -> None:
        console.print(f"  [red]ERROR:[/] {message}")


def create_progress() -> Progress:
    """Create a Rich progress bar for step processing."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
    )
