"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from skkn_writer.errors import StorageQuotaError
from skkn_writer.key_pool import ApiKeyPool
from skkn_writer.models import ChatTurn, ProjectConfig, UserInfo

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class MemoryStore:
    """Dict-backed KeyValueStore; ``fail_writes`` simulates a full disk."""

    def __init__(self, max_chars: int | None = None) -> None:
        self.data: dict[str, str] = {}
        self.max_chars = max_chars
        self.fail_writes = False

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise OSError("disk full")
        if self.max_chars is not None and len(value) > self.max_chars:
            raise StorageQuotaError(f"{key}: {len(value)} chars")
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class FakeChatClient:
    """Scripted ChatClient.

    Each reply is a string, an exception to raise, or a callable taking the
    prompt. Replies stream in 40-char chunks so cancellation can interrupt
    them midway. Without scripted replies a numbered filler text is returned.
    """

    CHUNK = 40

    def __init__(self, replies: list | None = None) -> None:
        self.replies = list(replies or [])
        self.prompts: list[str] = []
        self.initialized_with: list[tuple[str, str | None]] = []
        self.cancel_after_chunks: int | None = None
        self._history: list[ChatTurn] = []

    def initialize(self, api_key: str, model: str | None = None) -> None:
        self.initialized_with.append((api_key, model))
        self._history = []

    def send_stream(self, prompt, on_chunk, cancel_token=None) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else f"Nội dung phản hồi số {len(self.prompts)}."
        if callable(reply):
            reply = reply(prompt)
        if isinstance(reply, BaseException):
            raise reply

        for i, start in enumerate(range(0, len(reply), self.CHUNK)):
            if self.cancel_after_chunks is not None and i == self.cancel_after_chunks and cancel_token:
                cancel_token.cancel()
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            on_chunk(reply[start:start + self.CHUNK])

        self._history.append(ChatTurn(role="user", text=prompt))
        self._history.append(ChatTurn(role="model", text=reply))
        return reply

    def get_history(self) -> list[ChatTurn]:
        return list(self._history)

    def set_history(self, history: list[ChatTurn]) -> None:
        self._history = list(history)


class RecordingCallbacks:
    """PipelineCallbacks that records events and answers from scripted queues."""

    def __init__(self, outline_reviews=None, solution_reviews=None, error_decisions=None, restore=False):
        from skkn_writer.models import ErrorDecision, ReviewResult

        self._default_review = ReviewResult
        self._default_error = ErrorDecision
        self.outline_reviews = list(outline_reviews or [])
        self.solution_reviews = list(solution_reviews or [])
        self.error_decisions = list(error_decisions or [])
        self.restore = restore
        self.events: list[tuple] = []
        self.chunks: list[str] = []
        self.errors_shown = []
        self.warnings: list[str] = []

    def on_phase_start(self, phase, description):
        self.events.append(("phase_start", phase))

    def on_phase_end(self, phase, success):
        self.events.append(("phase_end", phase, success))

    def on_step_start(self, step, label):
        self.events.append(("step_start", int(step)))

    def on_step_end(self, step, label, chars):
        self.events.append(("step_end", int(step)))

    def on_chunk(self, text):
        self.chunks.append(text)

    def on_outline_review(self, outline, round_num, max_rounds):
        self.events.append(("outline_review", round_num))
        return self.outline_reviews.pop(0) if self.outline_reviews else self._default_review()

    def on_solution_review(self, number, content):
        self.events.append(("solution_review", number))
        return self.solution_reviews.pop(0) if self.solution_reviews else self._default_review()

    def on_restore_offer(self, data):
        return self.restore

    def on_generation_error(self, info, can_retry):
        self.errors_shown.append(info)
        return self.error_decisions.pop(0) if self.error_decisions else self._default_error()

    def on_warning(self, message):
        self.warnings.append(message)

    def on_error(self, message):
        self.warnings.append(message)


# ---------------------------------------------------------------------------
# Sample replies
# ---------------------------------------------------------------------------

HEAVY = "━" * 21


def solution_reply(number: int) -> str:
    """A detailed solution write-up in the shape the locator expects."""
    body = (
        f"Giải pháp này giúp học sinh chủ động hơn trong giờ học (đoạn {number}). " * 12
    )
    return (
        f"{HEAVY}\n📋 GIẢI PHÁP {number}: Tổ chức hoạt động nhóm theo dự án số {number}\n{HEAVY}\n\n"
        f"1. MỤC TIÊU\n{body}\n\n"
        f"2. QUY TRÌNH\nBước 1: Chuẩn bị. Bước 2: Triển khai. Bước 3: Đánh giá.\n\n"
        f"KẾT THÚC GIẢI PHÁP {number}\n{HEAVY}\n"
    )


def standard_replies(num_solutions: int = 3) -> list:
    return [
        "DÀN Ý CHI TIẾT\nI. Đặt vấn đề\nII. Cơ sở lý luận\nIII. Thực trạng\nIV. Giải pháp\nV. Kết quả",
        "PHẦN I. ĐẶT VẤN ĐỀ\nLý do chọn đề tài...\nPHẦN II. CƠ SỞ LÝ LUẬN\n...",
        "PHẦN III. THỰC TRẠNG\nKhảo sát 120 học sinh khối 10...\n\nPHẦN IV. CÁC GIẢI PHÁP\n",
        *[solution_reply(n) for n in range(1, num_solutions + 1)],
        "PHẦN V. KẾT QUẢ\nBảng so sánh trước và sau...\nPHẦN VI. KẾT LUẬN\n...",
        "✅ Đã hoàn thành SKKN.",
    ]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def volatile_store() -> MemoryStore:
    return MemoryStore(max_chars=10_000)


@pytest.fixture
def project_config() -> ProjectConfig:
    return ProjectConfig(
        llm={"api_keys": ["key-one-aaaa", "key-two-bbbb", "key-three-cccc"]},
        autosave_delay=60.0,
        retry_delay=0.0,
        manual_retry_delay=0.0,
        review_continue_delay=0.0,
        generate_appendix=False,
        export_docx=False,
    )


@pytest.fixture
def user_info() -> UserInfo:
    return UserInfo(
        topic="Ứng dụng trò chơi học tập trong dạy học Toán 10",
        subject="Toán",
        level="THPT",
        grade="Lớp 10",
        school="THPT Nguyễn Du",
        location="Huyện Thanh Oai, Hà Nội",
        page_limit=30,
        num_solutions=3,
    )


@pytest.fixture
def fake_client() -> FakeChatClient:
    return FakeChatClient(standard_replies())


@pytest.fixture
def callbacks() -> RecordingCallbacks:
    return RecordingCallbacks()


@pytest.fixture
def make_pipeline(tmp_path, project_config, user_info, memory_store, volatile_store, callbacks):
    """Factory building a Pipeline wired to fakes; keyword args override defaults."""
    from skkn_writer.pipeline import Pipeline

    created = []

    def _make(**overrides):
        config = overrides.pop("config", project_config)
        store = overrides.pop("store", memory_store)
        kwargs = dict(
            config_dir=tmp_path,
            callbacks=overrides.pop("callbacks", callbacks),
            client=overrides.pop("client", FakeChatClient(standard_replies())),
            key_pool=overrides.pop("key_pool", ApiKeyPool(config.llm.api_keys, store=store)),
            store=store,
            volatile=overrides.pop("volatile", volatile_store),
            sleep=lambda _s: None,
        )
        info = overrides.pop("user_info", user_info.model_copy(deep=True))
        kwargs.update(overrides)
        pipeline = Pipeline(config, info, **kwargs)
        created.append(pipeline)
        return pipeline

    yield _make
    for pipeline in created:
        pipeline.autosaver.cancel()
