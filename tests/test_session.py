"""Tests for session.py: stores, snapshots and auto-save."""

from __future__ import annotations

import threading

import pytest

from skkn_writer.errors import StorageQuotaError
from skkn_writer.models import (
    DocumentBlock,
    GenerationState,
    GenerationStep,
    SolutionContent,
    SolutionsState,
)
from skkn_writer.session import (
    MODEL_STORAGE_KEY,
    SESSION_STORAGE_KEY,
    AutoSaver,
    FileKeyValueStore,
    SessionController,
    VolatileStore,
)


@pytest.fixture
def controller(memory_store, volatile_store):
    return SessionController(memory_store, volatile_store)


@pytest.fixture
def state():
    return GenerationState(
        step=int(GenerationStep.PART_I_II),
        blocks=[
            DocumentBlock(step=1, label="Dàn ý", content="DÀN Ý"),
            DocumentBlock(step=2, label="Phần I & II", content="\n\n---\n\nPHẦN I"),
        ],
    )


class TestFileKeyValueStore:
    def test_set_get_delete(self, tmp_path):
        store = FileKeyValueStore(tmp_path / "session")
        assert store.get("k") is None
        store.set("k", "giá trị")
        assert store.get("k") == "giá trị"
        store.delete("k")
        assert store.get("k") is None
        store.delete("k")

    def test_write_leaves_no_temp_file(self, tmp_path):
        store = FileKeyValueStore(tmp_path)
        store.set("skkn_session_data", "{}")
        store.set("skkn_session_data", "{\"a\": 1}")
        assert [p.name for p in tmp_path.iterdir()] == ["skkn_session_data"]


class TestVolatileStore:
    def test_quota_rejects_and_keeps_previous(self):
        store = VolatileStore(max_chars=10)
        store.set("a", "x" * 6)
        with pytest.raises(StorageQuotaError):
            store.set("b", "y" * 5)
        assert store.get("b") is None
        assert store.get("a") == "x" * 6

    def test_replacing_key_counts_only_other_keys(self):
        store = VolatileStore(max_chars=10)
        store.set("a", "x" * 8)
        store.set("a", "z" * 10)
        assert store.get("a") == "z" * 10


class TestSessionController:
    def test_input_form_is_never_saved(self, controller, memory_store, user_info):
        snapshot = controller.build_snapshot(user_info, GenerationState(), SolutionsState())
        assert controller.save(snapshot) is False
        assert SESSION_STORAGE_KEY not in memory_store.data

    def test_round_trip_blanks_reference_text(self, controller, user_info, state):
        info = user_info.model_copy(update={"reference_documents": "TÀI LIỆU THAM KHẢO"})
        solutions = SolutionsState(solution1=SolutionContent(content="GP1", is_approved=True))
        assert controller.save(controller.build_snapshot(info, state, solutions, outline_feedback="ngắn hơn"))

        loaded = controller.load_pending()
        assert loaded.user_info.reference_documents == ""
        assert loaded.has_reference_documents is True
        assert loaded.state.step == GenerationStep.PART_I_II
        assert loaded.state.full_document == "DÀN Ý\n\n---\n\nPHẦN I"
        assert [b.step for b in loaded.state.blocks] == [1, 2]
        assert loaded.solutions_state.get(1).is_approved
        assert loaded.outline_feedback == "ngắn hơn"
        assert controller.last_saved_at is not None

    def test_corrupt_snapshot_is_deleted(self, controller, memory_store):
        memory_store.data[SESSION_STORAGE_KEY] = "{not json"
        assert controller.load_pending() is None
        assert SESSION_STORAGE_KEY not in memory_store.data

    def test_undecodable_snapshot_file_is_deleted(self, tmp_path, volatile_store):
        path = tmp_path / SESSION_STORAGE_KEY
        path.write_bytes(b'{"state": \xff\xfe garbage')
        controller = SessionController(FileKeyValueStore(tmp_path), volatile_store)

        assert controller.load_pending() is None
        assert not path.exists()

    def test_undecodable_model_file_is_ignored(self, tmp_path, volatile_store):
        (tmp_path / MODEL_STORAGE_KEY).write_bytes(b"\xff\xfe")
        controller = SessionController(FileKeyValueStore(tmp_path), volatile_store)
        assert controller.recall_model() is None

    def test_storage_failure_is_swallowed(self, controller, memory_store, user_info, state):
        memory_store.fail_writes = True
        assert controller.save(controller.build_snapshot(user_info, state, SolutionsState())) is False
        assert controller.last_saved_at is None

    def test_clear(self, controller, memory_store, user_info, state):
        controller.save(controller.build_snapshot(user_info, state, SolutionsState()))
        controller.clear()
        assert controller.load_pending() is None

    def test_oversized_reference_text_is_skipped(self, memory_store):
        controller = SessionController(memory_store, VolatileStore(max_chars=5))
        controller.remember_reference_documents("quá dài để lưu")
        assert controller.recall_reference_documents() == ""

    def test_reference_text_and_model_recall(self, controller):
        controller.remember_reference_documents("Tài liệu")
        controller.remember_model("gemini-2.5-pro")
        assert controller.recall_reference_documents() == "Tài liệu"
        assert controller.recall_model() == "gemini-2.5-pro"
        controller.remember_reference_documents("")
        assert controller.recall_reference_documents() == ""


class TestAutoSaver:
    def test_schedule_is_debounced(self):
        fired = threading.Event()
        calls = []

        def callback():
            calls.append(1)
            fired.set()

        saver = AutoSaver(callback, delay=0.05)
        for _ in range(3):
            saver.schedule()
        assert fired.wait(2.0)
        assert calls == [1]
        assert not saver.pending

    def test_flush_runs_pending_save(self):
        calls = []
        saver = AutoSaver(lambda: calls.append(1), delay=60)
        saver.flush()
        assert calls == []
        saver.schedule()
        saver.flush()
        assert calls == [1]
        assert not saver.pending

    def test_cancel(self):
        calls = []
        saver = AutoSaver(lambda: calls.append(1), delay=60)
        saver.schedule()
        assert saver.pending
        saver.cancel()
        saver.flush()
        assert calls == []
