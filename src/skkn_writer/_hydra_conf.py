"""Hydra structured config dataclasses.

These mirror the Pydantic ``ProjectConfig`` for Hydra schema validation.
At runtime the Hydra DictConfig is converted to ``ProjectConfig`` via
``cli._to_project_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from hydra.core.config_store import ConfigStore


@dataclass
class LLMConf:
    model: str = "gemini-2.5-flash"
    api_type: str = "openai"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    api_keys: list[str] = field(default_factory=lambda: ["${oc.env:GEMINI_API_KEYS,''}"])


@dataclass
class SkknConf:
    # --- Dispatch + CLI-only fields ---
    mode: str = "run"
    no_approve: bool = False
    verbose: bool = False
    quiet: bool = False
    stream: bool = False
    topic: str | None = None
    page_limit: int | None = None
    num_solutions: int | None = None
    model: str | None = None
    query: str = ""

    # --- ProjectConfig fields (1:1 mapping) ---
    project_name: str = "skkn"
    output_dir: str = "output/"
    session_dir: str = ".skkn_session/"

    user_info_file: str | None = None
    reference_docs: list[str] = field(default_factory=list)
    template_file: str | None = None

    llm: LLMConf = field(default_factory=LLMConf)
    timeout: int = 180
    seed: int = 42

    approval_policy: str = "auto"
    max_outline_revisions: int = 3
    max_reference_chars: int = 80000
    max_volatile_chars: int = 5_000_000
    autosave_delay: float = 2.0
    retry_delay: float = 0.5
    manual_retry_delay: float = 0.3
    review_continue_delay: float = 0.1
    generate_appendix: bool = True
    export_docx: bool = True


# Keys present in SkknConf that are NOT part of ProjectConfig.
CLI_ONLY_KEYS = frozenset({
    "mode", "no_approve", "verbose", "quiet", "stream",
    "topic", "page_limit", "num_solutions", "model", "query",
})


def register_configs() -> None:
    """Register the structured config schema with Hydra's ConfigStore."""
    cs = ConfigStore.instance()
    cs.store(name="skkn_schema", node=SkknConf)
