"""Tests for template_reducer.py."""

from __future__ import annotations

from skkn_writer.models import SKKNSection, SKKNTemplate
from skkn_writer.template_reducer import (
    addressable_sections,
    parse_custom_template,
    reduce_sections,
    short_label,
    template_structure_text,
)


def _s(id_: str, level: int, title: str | None = None) -> SKKNSection:
    return SKKNSection(id=id_, level=level, title=title or f"Mục {id_}")


class TestReduceSections:
    def test_flat_input_is_unchanged(self):
        flat = [_s("I", 1), _s("II", 1), _s("III", 1)]
        assert reduce_sections(flat) == flat
        assert reduce_sections(reduce_sections(flat)) == flat

    def test_parent_replaced_by_children(self):
        sections = [_s("I", 1), _s("1.1", 2), _s("1.2", 2), _s("II", 1)]
        assert [s.id for s in reduce_sections(sections)] == ["1.1", "1.2", "II"]

    def test_subtree_of_kept_child_is_skipped(self):
        sections = [
            _s("I", 1),
            _s("1.1", 2),
            _s("1.1.1", 3),
            _s("1.1.2", 3),
            _s("1.2", 2),
            _s("II", 1),
        ]
        assert [s.id for s in reduce_sections(sections)] == ["1.1", "1.2", "II"]

    def test_misleveled_input_grouped(self):
        sections = [_s("a", 2), _s("b", 3), _s("c", 2)]
        assert [s.id for s in reduce_sections(sections)] == ["a", "c"]

    def test_empty_input(self):
        assert reduce_sections([]) == []


class TestParseCustomTemplate:
    def test_round_trip(self):
        template = SKKNTemplate(name="Mẫu", sections=[_s("I", 1)])
        parsed = parse_custom_template(template.model_dump_json())
        assert parsed == template

    def test_malformed_json_ignored(self):
        assert parse_custom_template("{not json") is None

    def test_template_without_sections_ignored(self):
        assert parse_custom_template(SKKNTemplate(name="x").model_dump_json()) is None

    def test_missing_template(self):
        assert parse_custom_template(None) is None
        assert addressable_sections(None) == []

    def test_addressable_sections(self):
        template = SKKNTemplate(sections=[_s("I", 1), _s("1.1", 2), _s("II", 1)])
        assert [s.id for s in addressable_sections(template.model_dump_json())] == ["1.1", "II"]


class TestLabels:
    def test_short_label_truncates(self):
        assert short_label("Ngắn gọn") == "Ngắn gọn"
        assert short_label("A" * 30) == "A" * 25 + "..."

    def test_structure_text_indents_levels(self):
        text = template_structure_text(SKKNTemplate(sections=[_s("I", 1, "MỞ ĐẦU"), _s("1.1", 2, "Lý do")]))
        assert text.splitlines() == ["📌 I. MỞ ĐẦU", "  • 1.1. Lý do"]
