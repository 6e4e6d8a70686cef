"""Tests for Pipeline helper functions (no LLM calls required)."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from skkn_writer.agents.structure_extractor import make_structure_extractor
from skkn_writer.models import ExtractedStructure, ProjectConfig
from skkn_writer.pipeline import _extract_json, _extract_text

STRUCTURE_JSON = (
    '{"sections": [{"id": "I", "level": 1, "title": "ĐẶT VẤN ĐỀ"},'
    ' {"id": "1.1", "level": 2, "title": "Lý do chọn đề tài"}],'
    ' "page_limit_from_template": 20}'
)


class TestExtractText:
    def test_summary_preferred(self):
        response = SimpleNamespace(summary="tóm tắt", chat_history=[{"content": "khác"}])
        assert _extract_text(response) == "tóm tắt"

    def test_last_history_message(self):
        response = SimpleNamespace(summary="", chat_history=[{"content": "a"}, {"content": "cuối"}])
        assert _extract_text(response) == "cuối"

    def test_code_fences_stripped(self):
        assert _extract_text("```json\n{\"a\": 1}\n```") == '{"a": 1}'


class TestExtractJson:
    def test_json_embedded_in_prose(self):
        response = SimpleNamespace(summary=f"Kết quả:\n{STRUCTURE_JSON}\nXong.")
        structure = _extract_json(response, ExtractedStructure)
        assert [s.id for s in structure.sections] == ["I", "1.1"]
        assert structure.page_limit_from_template == 20

    def test_invalid_json_returns_none(self):
        assert _extract_json(SimpleNamespace(summary="không có JSON"), ExtractedStructure) is None


class TestStructureExtractor:
    def test_agent_construction(self):
        agent = make_structure_extractor(ProjectConfig(), "key-one-aaaa")
        assert agent.name == "StructureExtractor"
        assert "ExtractedStructure" in agent.system_message

    def test_pipeline_parses_agent_reply(self, make_pipeline):
        pipeline = make_pipeline()
        orchestrator = MagicMock()
        orchestrator.initiate_chat.return_value = SimpleNamespace(summary=STRUCTURE_JSON)
        with patch("skkn_writer.pipeline._make_orchestrator", return_value=orchestrator), \
             patch("skkn_writer.pipeline.make_structure_extractor") as make_agent:
            structure = pipeline._extract_structure("I. ĐẶT VẤN ĐỀ\n1.1. Lý do chọn đề tài")

        assert [s.title for s in structure.sections] == ["ĐẶT VẤN ĐỀ", "Lý do chọn đề tài"]
        assert make_agent.call_args.args[1] == "key-one-aaaa"

    def test_agent_failure_falls_back(self, make_pipeline, callbacks):
        pipeline = make_pipeline()
        orchestrator = MagicMock()
        orchestrator.initiate_chat.side_effect = RuntimeError("network down")
        with patch("skkn_writer.pipeline._make_orchestrator", return_value=orchestrator), \
             patch("skkn_writer.pipeline.make_structure_extractor"):
            assert pipeline._extract_structure("mẫu") is None
        assert callbacks.warnings
