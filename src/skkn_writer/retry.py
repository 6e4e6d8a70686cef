"""Error classification, friendly error text and the single-retry coordinator."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from .errors import GenerationCancelled, GenerationError
from .key_pool import ApiKeyPool, mask_key
from .models import ErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

_QUOTA_MARKERS = ("resource_exhausted", "quota", "exceeded your current")
_RATE_MARKERS = ("rate limit", "rate_limit", "ratelimit", "too many requests")
_AUTH_MARKERS = ("api key not valid", "api_key_invalid", "invalid api key", "permission_denied")
_NETWORK_MARKERS = ("timed out", "timeout", "connection", "network")


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def _status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an LLM client failure to QUOTA_EXCEEDED, RATE_LIMIT or OTHER."""
    if isinstance(exc, GenerationError):
        return exc.kind
    text = str(exc).lower()
    if any(m in text for m in _QUOTA_MARKERS):
        return ErrorKind.QUOTA_EXCEEDED
    if _status_code(exc) == 429 or "429" in text or any(m in text for m in _RATE_MARKERS):
        return ErrorKind.RATE_LIMIT
    return ErrorKind.OTHER


@dataclass(frozen=True)
class ErrorInfo:
    title: str
    message: str
    suggestions: list[str] = field(default_factory=list)


def describe_error(kind: ErrorKind, message: str) -> ErrorInfo:
    """Title, explanation and remediation hints for the error banner."""
    lower = message.lower()
    if kind == ErrorKind.QUOTA_EXCEEDED:
        return ErrorInfo(
            title="Hết hạn mức API (quota)",
            message="API key hiện tại đã dùng hết hạn mức miễn phí trong ngày hoặc trong phút.",
            suggestions=[
                "Chọn 'Thử lại (đổi key)' để chuyển sang API key dự phòng.",
                "Thêm API key khác vào GEMINI_API_KEYS (phân tách bằng dấu phẩy).",
                "Lưu phiên và quay lại sau khi hạn mức được đặt lại.",
            ],
        )
    if kind == ErrorKind.RATE_LIMIT:
        return ErrorInfo(
            title="Gửi yêu cầu quá nhanh",
            message="Máy chủ đang giới hạn tần suất yêu cầu cho API key này.",
            suggestions=[
                "Đợi khoảng một phút rồi thử lại.",
                "Chọn 'Thử lại (đổi key)' để dùng API key khác.",
            ],
        )
    if any(m in lower for m in _AUTH_MARKERS):
        return ErrorInfo(
            title="API key không hợp lệ",
            message="Máy chủ từ chối API key đang dùng.",
            suggestions=[
                "Kiểm tra lại API key tại https://aistudio.google.com/apikey.",
                "Chọn 'Đổi API key' để nhập key mới.",
            ],
        )
    if any(m in lower for m in _NETWORK_MARKERS):
        return ErrorInfo(
            title="Lỗi kết nối",
            message="Không kết nối được tới máy chủ AI hoặc yêu cầu bị quá thời gian.",
            suggestions=[
                "Kiểm tra kết nối mạng rồi thử lại.",
                "Tăng 'timeout' trong cấu hình nếu tài liệu rất dài.",
            ],
        )
    return ErrorInfo(
        title="Đã xảy ra lỗi",
        message=message or "Không thể tạo nội dung.",
        suggestions=[
            "Thử lại bước hiện tại; nội dung đã viết được giữ nguyên.",
            "Lưu phiên để tiếp tục sau nếu lỗi lặp lại.",
        ],
    )


# ---------------------------------------------------------------------------
# Retry coordination
# ---------------------------------------------------------------------------

def _as_generation_error(exc: BaseException, kind: ErrorKind | None = None) -> GenerationError:
    if isinstance(exc, GenerationError):
        return exc
    return GenerationError(kind or classify_error(exc), str(exc) or "Failed to generate.")


class RetryCoordinator:
    """Runs a generation attempt, retrying once on a fresh key after quota/rate errors.

    ``on_new_key`` is called with the replacement key before the retry so the
    caller can reinitialize its chat client.
    """

    def __init__(
        self,
        pool: ApiKeyPool,
        *,
        on_new_key: Callable[[str], None],
        delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.pool = pool
        self.on_new_key = on_new_key
        self.delay = delay
        self.sleep = sleep

    def run(self, attempt: Callable[[], T]) -> T:
        try:
            return attempt()
        except GenerationCancelled:
            raise
        except Exception as exc:
            kind = classify_error(exc)
            if kind not in (ErrorKind.QUOTA_EXCEEDED, ErrorKind.RATE_LIMIT):
                raise _as_generation_error(exc, kind) from exc
            active = self.pool.get_active_key()
            rotation = self.pool.mark_key_error(active, kind.value) if active else None
            if rotation is None or not rotation.success or not rotation.new_key:
                raise _as_generation_error(exc, kind) from exc
            logger.warning("%s on active key, retrying once with %s", kind.value, mask_key(rotation.new_key))
            self.on_new_key(rotation.new_key)

        self.sleep(self.delay)
        try:
            return attempt()
        except GenerationCancelled:
            raise
        except Exception as exc:
            raise _as_generation_error(exc) from exc


def manual_retry_key(pool: ApiKeyPool) -> str | None:
    """Key for a user-triggered retry: the next healthy key, or the first after a reset."""
    rotation = pool.rotate_to_next_key("manual_retry")
    if rotation.success and rotation.new_key:
        return rotation.new_key
    pool.reset_all_keys()
    return pool.get_active_key()
