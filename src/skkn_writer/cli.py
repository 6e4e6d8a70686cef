"""CLI entry point using Hydra.

Usage examples:
  skkn mode=run user_info_file=user_info.yaml
  skkn mode=run topic="Ứng dụng AI trong dạy Toán 10" page_limit=30 no_approve=true
  skkn mode=run user_info_file=user_info.yaml model=gemini-2.5-pro
  skkn --config-dir . --config-name config mode=resume approval_policy=manual
  skkn mode=status
  skkn mode=export
  skkn mode=budget page_limit=30 num_solutions=3
  skkn mode=sections template_file=mau_skkn.docx
  skkn mode=subjects query=toán
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import hydra
from omegaconf import DictConfig, OmegaConf
from rich.table import Table

from ._hydra_conf import CLI_ONLY_KEYS, register_configs
from .config import apply_key_fallbacks, load_user_info
from .key_pool import mask_key
from .logging_config import RichCallbacks, console, create_progress, setup_logging
from .models import ProjectConfig, UserInfo

register_configs()

# ---------------------------------------------------------------------------
# Hydra DictConfig → Pydantic ProjectConfig bridge
# ---------------------------------------------------------------------------


def _to_project_config(cfg: DictConfig) -> ProjectConfig:
    """Convert a Hydra *DictConfig* to a Pydantic ``ProjectConfig``.

    CLI-only keys (``mode``, ``topic``, etc.) are stripped before validation.
    API key fallbacks from the environment are applied afterwards.
    """
    container: dict[str, Any] = OmegaConf.to_container(cfg, resolve=True)  # type: ignore[assignment]
    for key in CLI_ONLY_KEYS:
        container.pop(key, None)
    config = ProjectConfig.model_validate(container)
    return apply_key_fallbacks(config)


def _get_config_dir() -> Path:
    """Extract ``--config-dir`` from *sys.argv* (before Hydra consumes it).

    Falls back to the current working directory.
    """
    for i, arg in enumerate(sys.argv):
        if arg == "--config-dir" and i + 1 < len(sys.argv):
            return Path(sys.argv[i + 1])
        if arg.startswith("--config-dir="):
            return Path(arg.split("=", 1)[1])
    return Path.cwd()


def _build_user_info(cfg: DictConfig, config: ProjectConfig, config_dir: Path, *, interactive: bool) -> UserInfo:
    """Merge the user info file, command-line overrides and interactive prompts."""
    if config.user_info_file:
        path = Path(config.user_info_file)
        info = load_user_info(path if path.is_absolute() else config_dir / path)
    else:
        info = UserInfo()

    overrides = {
        key: cfg.get(key)
        for key in ("topic", "page_limit", "num_solutions")
        if cfg.get(key) is not None
    }
    data = info.model_dump()
    data.update(overrides)

    if interactive:
        from .prompts import run_interactive_prompts

        data = run_interactive_prompts(data)
    return UserInfo.model_validate(data)


def _make_pipeline(cfg: DictConfig, user_info: UserInfo | None = None):
    config = _to_project_config(cfg)
    config_dir = _get_config_dir()

    from .pipeline import Pipeline

    callbacks = RichCallbacks(interactive=not cfg.no_approve, show_stream=cfg.get("stream", False))
    pipeline = Pipeline(config, user_info, config_dir=config_dir, callbacks=callbacks)
    if cfg.get("model"):
        # remembered for later runs
        pipeline.set_model(cfg.model)
    return pipeline


def _report(result) -> None:
    if result.success:
        console.print("\n[bold green]SKKN completed successfully![/]")
    else:
        console.print("\n[bold red]SKKN workflow did not complete.[/]")
    console.print(f"  Step: {result.final_step}")
    console.print(f"  Document: {result.document_chars:,} chars")
    if result.approved_solutions:
        console.print(f"  Approved solutions: {', '.join(map(str, result.approved_solutions))}")
    for path in result.exported_files:
        console.print(f"  Exported: {path}")
    for warning in result.warnings:
        console.print(f"  [yellow]{warning}[/]")
    for err in result.errors:
        console.print(f"  [red]{err}[/]")
    if not result.success:
        sys.exit(1)


def _run_pipeline(pipeline, *, offer_restore: bool) -> None:
    try:
        result = pipeline.run(offer_restore=offer_restore)
    except KeyboardInterrupt:
        pipeline.save_session()
        console.print("\n[yellow]Interrupted. Progress saved; continue with mode=resume.[/]")
        sys.exit(130)
    _report(result)


# ---------------------------------------------------------------------------
# Mode handlers
# ---------------------------------------------------------------------------


def _run_mode(cfg: DictConfig) -> None:
    config = _to_project_config(cfg)
    user_info = _build_user_info(cfg, config, _get_config_dir(), interactive=not cfg.no_approve)
    if not user_info.topic.strip():
        console.print("[red]A topic is required (topic=... or user_info_file=...)[/]")
        sys.exit(1)

    pipeline = _make_pipeline(cfg, user_info)
    console.print(f"[bold]Starting SKKN workflow:[/] {user_info.topic}")
    _run_pipeline(pipeline, offer_restore=True)


def _resume_mode(cfg: DictConfig) -> None:
    pipeline = _make_pipeline(cfg)
    data = pipeline.pending_session()
    if data is None:
        console.print("[yellow]No saved session to resume.[/]")
        sys.exit(1)

    pipeline.restore_session(data)
    console.print(f"[bold]Resuming[/] {data.user_info.topic} at '{pipeline.step_label()}'")
    _run_pipeline(pipeline, offer_restore=False)


def _status_mode(cfg: DictConfig) -> None:
    pipeline = _make_pipeline(cfg)
    data = pipeline.pending_session()
    if data is None:
        console.print("No saved session.")
        return

    from .steps import step_label
    from .template_reducer import addressable_sections

    sections = addressable_sections(data.user_info.custom_template)
    table = Table(title="Saved session", show_lines=True)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Topic", data.user_info.topic or "-")
    table.add_row("Model", pipeline.model)
    table.add_row("Step", f"{data.state.step} ({step_label(data.state.step, sections)})")
    table.add_row("Document", f"{len(data.state.full_document):,} chars in {len(data.state.blocks)} blocks")
    approved = [
        str(n) for n in range(1, 6)
        if (s := data.solutions_state.get(n)) is not None and s.is_approved
    ]
    table.add_row("Approved solutions", ", ".join(approved) or "-")
    table.add_row("Appendix", "yes" if data.appendix_document else "no")
    table.add_row("References", "kept" if data.has_reference_documents else "none")
    table.add_row("Saved at", data.saved_at)
    console.print(table)

    statuses = Table(title="API keys")
    statuses.add_column("Key")
    statuses.add_column("Status")
    for status in pipeline.key_pool.statuses():
        statuses.add_row(mask_key(status.key), "ok" if status.healthy else f"[red]{status.error}[/]")
    console.print(statuses)


def _clear_mode(cfg: DictConfig) -> None:
    pipeline = _make_pipeline(cfg)
    pipeline.clear_session()
    console.print("[green]Saved session cleared.[/]")


def _export_mode(cfg: DictConfig) -> None:
    pipeline = _make_pipeline(cfg)
    data = pipeline.pending_session()
    if data is None:
        console.print("[yellow]No saved session to export.[/]")
        sys.exit(1)

    pipeline.restore_session(data)
    warnings: list[str] = []
    with create_progress() as progress:
        progress.add_task("Exporting DOCX files...", total=None)
        exported = pipeline.export_all(warnings)
    for path in exported:
        console.print(f"[green]Written {path}[/]")
    if warnings:
        sys.exit(1)


def _budget_mode(cfg: DictConfig) -> None:
    from .budget import allocate_pages, allocation_table

    config = _to_project_config(cfg)
    user_info = _build_user_info(cfg, config, _get_config_dir(), interactive=False)
    allocation = allocate_pages(user_info.page_limit, user_info.num_solutions)
    if allocation is None:
        console.print("[yellow]No page limit set (page_limit=...); nothing to allocate.[/]")
        return
    console.print(f"[bold]{allocation.total_pages} trang, {allocation.num_solutions} giải pháp[/]")
    console.print(allocation_table(allocation))


def _sections_mode(cfg: DictConfig) -> None:
    from .template_reducer import reduce_sections

    pipeline = _make_pipeline(cfg)
    if not pipeline.config.template_file:
        console.print("[red]template_file is required for sections mode[/]")
        sys.exit(1)

    with create_progress() as progress:
        progress.add_task("Analysing template...", total=None)
        template = pipeline.import_template(pipeline.config.template_file)
    if template is None:
        console.print("[yellow]No sections extracted; the standard flow would be used.[/]")
        return

    table = Table(title=template.name)
    table.add_column("Step", justify="right")
    table.add_column("Id")
    table.add_column("Title")
    for i, section in enumerate(reduce_sections(template.sections)):
        table.add_row(str(2 + i), section.id, section.title)
    console.print(table)
    if template.page_limit_from_template:
        console.print(f"  Page limit from template: {template.page_limit_from_template}")


def _subjects_mode(cfg: DictConfig) -> None:
    from .knowledge import search_subjects, subject_groups

    subjects = search_subjects(cfg.get("query", "") or "")
    table = Table(title=f"Subjects ({len(subjects)})")
    table.add_column("Name", style="cyan")
    table.add_column("Group")
    for group in subject_groups():
        for s in subjects:
            if s["group"] == group:
                table.add_row(s["name"], group)
    console.print(table)


_MODE_DISPATCH: dict[str, Any] = {
    "run": _run_mode,
    "resume": _resume_mode,
    "status": _status_mode,
    "clear": _clear_mode,
    "export": _export_mode,
    "budget": _budget_mode,
    "sections": _sections_mode,
    "subjects": _subjects_mode,
}


# ---------------------------------------------------------------------------
# Hydra entry point
# ---------------------------------------------------------------------------


@hydra.main(config_path="conf", config_name="config", version_base=None)
def hydra_entry(cfg: DictConfig) -> None:
    """Hydra-managed CLI entry point."""
    setup_logging(verbose=cfg.get("verbose", False), quiet=cfg.get("quiet", False))

    mode = cfg.get("mode", "run")
    handler = _MODE_DISPATCH.get(mode)
    if handler is None:
        console.print(f"[red]Unknown mode: {mode!r}. Choose from: {', '.join(_MODE_DISPATCH)}[/]")
        sys.exit(1)

    handler(cfg)


def main() -> None:
    """Package entry point (``[project.scripts]`` target)."""
    hydra_entry()  # pylint: disable=no-value-for-parameter
