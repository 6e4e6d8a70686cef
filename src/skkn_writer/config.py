"""Configuration loader and LLM config builder."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import ProjectConfig, UserInfo

load_dotenv()

# ---------------------------------------------------------------------------
# YAML loading with ${ENV_VAR} interpolation
# ---------------------------------------------------------------------------

_ENV_RE = re.compile(r"\$\{([^}]+)\}")


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${ENV_VAR}`` references in strings."""
    if isinstance(value, str):
        def _replace(m: re.Match) -> str:
            return os.environ.get(m.group(1), "")
        return _ENV_RE.sub(_replace, value)
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(v) for v in value]
    return value


def _split_keys(raw: str) -> list[str]:
    return [k.strip() for k in raw.split(",") if k.strip()]


def apply_key_fallbacks(config: ProjectConfig) -> ProjectConfig:
    """Fill the key pool from ``GEMINI_API_KEYS`` (comma-separated) or ``GEMINI_API_KEY``.

    Entries that resolved to an empty string (unset ``${VAR}``) are dropped
    and a single configured entry holding commas is split.
    """
    keys: list[str] = []
    for entry in config.llm.api_keys:
        keys.extend(_split_keys(entry))
    if not keys:
        keys = _split_keys(os.getenv("GEMINI_API_KEYS", ""))
    if not keys:
        keys = _split_keys(os.getenv("GEMINI_API_KEY", ""))
    config.llm.api_keys = list(dict.fromkeys(keys))
    if config.llm.base_url:
        config.llm.base_url = config.llm.base_url.rstrip("/") + "/"
    return config


def load_config(config_path: str | Path) -> ProjectConfig:
    """Load a ``ProjectConfig`` from a YAML file."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    resolved = _resolve_env_vars(raw)
    config = ProjectConfig.model_validate(resolved)
    return apply_key_fallbacks(config)


def load_user_info(path: str | Path) -> UserInfo:
    """Load ``UserInfo`` fields from a YAML file."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"User info file not found: {p}")

    with open(p, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{p}: expected a mapping of user info fields")
    return UserInfo.model_validate(raw)


# ---------------------------------------------------------------------------
# LLM config builder
# ---------------------------------------------------------------------------

def build_llm_config(api_key: str, config: ProjectConfig, model: str | None = None) -> dict[str, Any]:
    """Return an AG2-compatible ``llm_config`` dict for *api_key*.

    The default endpoint is Gemini's OpenAI-compatible API, so the entry uses
    ``base_url`` routing with the configured ``api_type``.
    """
    entry: dict[str, Any] = {
        "model": model or config.llm.model,
        "api_key": api_key,
        "api_type": config.llm.api_type,
    }
    if config.llm.base_url:
        entry["base_url"] = config.llm.base_url
    return {
        "config_list": [entry],
        "timeout": config.timeout,
        "seed": config.seed,
    }
