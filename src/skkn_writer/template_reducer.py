"""Flatten a custom template outline into addressable generation units."""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from .models import SKKNSection, SKKNTemplate

logger = logging.getLogger(__name__)

LABEL_MAX_CHARS = 25


def reduce_sections(sections: list[SKKNSection]) -> list[SKKNSection]:
    """Pick one addressable unit per generation step.

    Walks the outline with a cursor:

    * a level-1 heading is kept only when it has no children (the next
      section is not deeper); otherwise its children are handled one by one;
    * a level>=2 heading is kept together with its whole subtree, which is
      skipped.

    Mis-levelled input is grouped best-effort, never rejected. An empty
    result falls back to the unfiltered input.
    """
    result: list[SKKNSection] = []
    i = 0
    n = len(sections)
    while i < n:
        section = sections[i]
        if section.level <= 1:
            has_children = i + 1 < n and sections[i + 1].level > section.level
            if not has_children:
                result.append(section)
            i += 1
            continue

        result.append(section)
        i += 1
        while i < n and sections[i].level > section.level:
            i += 1

    if not result:
        return list(sections)
    return result


def parse_custom_template(raw: str | None) -> SKKNTemplate | None:
    """Deserialize ``UserInfo.custom_template``.

    Returns ``None`` for missing or malformed JSON and for templates without
    sections, so callers fall back to the standard flow.
    """
    if not raw:
        return None
    try:
        template = SKKNTemplate.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        logger.warning("Ignoring malformed custom template: %s", e)
        return None
    if not template.sections:
        return None
    return template


def addressable_sections(raw_template: str | None) -> list[SKKNSection]:
    """Reduced sections of a serialized template, empty for the standard flow."""
    template = parse_custom_template(raw_template)
    if template is None:
        return []
    return reduce_sections(template.sections)


def template_structure_text(template: SKKNTemplate) -> str:
    """Indented outline listing used in the outline prompt."""
    lines = []
    for s in template.sections:
        indent = "  " * (s.level - 1)
        prefix = "📌" if s.level == 1 else ("•" if s.level == 2 else "○")
        lines.append(f"{indent}{prefix} {s.id}. {s.title}")
    return "\n".join(lines)


def short_label(title: str) -> str:
    if len(title) > LABEL_MAX_CHARS:
        return title[:LABEL_MAX_CHARS] + "..."
    return title
