"""Streaming chat client over AG2's OpenAIWrapper, plus cancellation."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Protocol

import autogen
from autogen.io import IOStream

from .config import build_llm_config
from .errors import GenerationCancelled
from .models import ChatTurn, ProjectConfig

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE = (
    "Bạn là chuyên gia viết Sáng kiến kinh nghiệm (SKKN) cho giáo viên Việt Nam. "
    "Luôn viết bằng tiếng Việt, đúng cấu trúc được yêu cầu, văn phong sư phạm tự nhiên."
)

ChunkHandler = Callable[[str], None]


class CancellationToken:
    """Thread-safe flag checked by the client on every streamed chunk."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled("Generation cancelled")


class ChatClient(Protocol):
    """Stateful chat session with streamed replies."""

    def initialize(self, api_key: str, model: str | None = None) -> None: ...
    def send_stream(
        self, prompt: str, on_chunk: ChunkHandler, cancel_token: CancellationToken | None = None,
    ) -> str: ...
    def get_history(self) -> list[ChatTurn]: ...
    def set_history(self, history: list[ChatTurn]) -> None: ...


# ---------------------------------------------------------------------------
# AG2 streaming bridge
# ---------------------------------------------------------------------------

class _ChunkStream:
    """IOStream that forwards streamed tokens to a chunk handler."""

    def __init__(self, on_chunk: ChunkHandler, cancel_token: CancellationToken | None) -> None:
        self.on_chunk = on_chunk
        self.cancel_token = cancel_token
        self.received = 0

    def _emit(self, text: str) -> None:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()
        if text:
            self.received += len(text)
            self.on_chunk(text)

    def print(self, *objects: Any, sep: str = " ", end: str = "\n", flush: bool = False) -> None:
        # Streamed tokens are printed without a line ending; everything else is chatter.
        if end == "":
            self._emit(sep.join(str(o) for o in objects))

    def send(self, message: Any) -> None:
        content = getattr(message, "content", None)
        while content is not None and not isinstance(content, str):
            content = getattr(content, "content", None)
        if isinstance(content, str):
            self._emit(content)

    def input(self, prompt: str = "", *, password: bool = False) -> str:
        raise RuntimeError("Streaming client does not accept console input")


class AutogenChatClient:
    """``ChatClient`` backed by ``autogen.OpenAIWrapper`` with ``stream=True``.

    History is kept locally and only grows on a successful reply, so a failed
    or cancelled prompt can simply be sent again.
    """

    def __init__(self, config: ProjectConfig) -> None:
        self.config = config
        self.model = config.llm.model
        self._client: autogen.OpenAIWrapper | None = None
        self._history: list[ChatTurn] = []

    def initialize(self, api_key: str, model: str | None = None) -> None:
        self.model = model or self.config.llm.model
        llm_config = build_llm_config(api_key, self.config, model=self.model)
        self._client = autogen.OpenAIWrapper(**llm_config)
        self._history = []
        logger.debug("Chat initialized with model %s", self.model)

    @property
    def initialized(self) -> bool:
        return self._client is not None

    def _messages(self, prompt: str) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": SYSTEM_MESSAGE}]
        for turn in self._history:
            role = "assistant" if turn.role == "model" else "user"
            messages.append({"role": role, "content": turn.text})
        messages.append({"role": "user", "content": prompt})
        return messages

    def send_stream(
        self,
        prompt: str,
        on_chunk: ChunkHandler,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        if self._client is None:
            raise RuntimeError("Chat client is not initialized; call initialize() first")
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        stream = _ChunkStream(on_chunk, cancel_token)
        with IOStream.set_default(stream):
            response = self._client.create(
                messages=self._messages(prompt), stream=True, cache_seed=None,
            )

        extracted = self._client.extract_text_or_completion_object(response)
        text = extracted[0] if extracted and isinstance(extracted[0], str) else ""
        if not stream.received and text:
            # Endpoint ignored stream=True; deliver the reply in one piece.
            stream._emit(text)

        self._history.append(ChatTurn(role="user", text=prompt))
        self._history.append(ChatTurn(role="model", text=text))
        return text

    def get_history(self) -> list[ChatTurn]:
        return list(self._history)

    def set_history(self, history: list[ChatTurn]) -> None:
        self._history = list(history)
