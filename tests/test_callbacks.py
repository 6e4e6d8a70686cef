"""Tests for the Rich console callbacks and interactive prompts."""

from __future__ import annotations

from unittest.mock import patch

from skkn_writer.logging_config import RichCallbacks
from skkn_writer.models import (
    ErrorAction,
    ReviewAction,
    SessionData,
    SnapshotState,
)
from skkn_writer.prompts import run_interactive_prompts
from skkn_writer.retry import ErrorInfo

ERROR = ErrorInfo(title="Hết hạn mức API (quota)", message="quota", suggestions=["Đổi key"])


class TestNonInteractive:
    def test_reviews_auto_approve(self):
        cb = RichCallbacks()
        assert cb.on_outline_review("dàn ý", 1, 3).action == ReviewAction.APPROVE
        assert cb.on_solution_review(1, "nội dung").action == ReviewAction.APPROVE

    def test_errors_abandon(self):
        assert RichCallbacks().on_generation_error(ERROR, True).action == ErrorAction.ABANDON

    def test_restore_declined(self, user_info):
        data = SessionData(user_info=user_info, state=SnapshotState(step=3), saved_at="2026-01-01T00:00:00")
        assert RichCallbacks().on_restore_offer(data) is False


class TestInteractive:
    def test_retry_choice(self):
        with patch("skkn_writer.logging_config.console.input", side_effect=["x", "t"]):
            decision = RichCallbacks(interactive=True).on_generation_error(ERROR, True)
        assert decision.action == ErrorAction.RETRY

    def test_retry_unavailable_then_new_key(self):
        with patch("skkn_writer.logging_config.console.input", side_effect=["t", "k", "new-key-1234"]):
            decision = RichCallbacks(interactive=True).on_generation_error(ERROR, False)
        assert decision.action == ErrorAction.CHANGE_KEY
        assert decision.api_key == "new-key-1234"

    def test_outline_revision_feedback(self):
        with patch("skkn_writer.logging_config.console.input", side_effect=["r", "Thêm giải pháp STEM", ""]):
            result = RichCallbacks(interactive=True).on_outline_review("dàn ý", 1, 3)
        assert result.action == ReviewAction.REVISE
        assert result.feedback == "Thêm giải pháp STEM"


class TestInteractivePrompts:
    def test_only_missing_fields_are_asked(self):
        info = {
            "topic": "Đề tài",
            "subject": "Toán",
            "level": "THPT",
            "grade": "10",
            "school": "THPT A",
            "location": "Hà Nội",
            "facilities": "Máy chiếu",
            "page_limit": 30,
            "num_solutions": 3,
            "requirements_confirmed": True,
        }
        with patch("skkn_writer.prompts.Prompt.ask") as ask, patch("skkn_writer.prompts.Confirm.ask") as confirm:
            assert run_interactive_prompts(dict(info)) == info
        ask.assert_not_called()
        confirm.assert_not_called()

    def test_special_requirements(self):
        info = {
            "topic": "Đề tài", "subject": "Toán", "level": "THPT", "grade": "10", "school": "A",
            "location": "B", "facilities": "C", "page_limit": 30, "num_solutions": 3,
        }
        with patch("skkn_writer.prompts.Prompt.ask", return_value="Dùng lớp 10A1"), \
             patch("skkn_writer.prompts.Confirm.ask", side_effect=[True, True, False]):
            result = run_interactive_prompts(info)
        assert result["requirements_confirmed"] is True
        assert result["include_practical_examples"] is True
        assert result["include_statistics"] is False
        assert result["special_requirements"] == "Dùng lớp 10A1"
