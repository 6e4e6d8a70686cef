"""Tests for llm_client.py: AG2 streaming bridge and cancellation."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from autogen.io import IOStream

from skkn_writer.errors import GenerationCancelled
from skkn_writer.llm_client import AutogenChatClient, CancellationToken, _ChunkStream
from skkn_writer.models import ChatTurn, ProjectConfig


class FakeWrapper:
    """Stands in for ``autogen.OpenAIWrapper``; prints chunks to the default IOStream."""

    chunks = ["Xin ", "chào ", "thầy cô."]
    streams = True

    def __init__(self, **llm_config) -> None:
        self.llm_config = llm_config
        self.calls: list[list[dict]] = []

    def create(self, messages, stream=False, cache_seed=None):
        self.calls.append(messages)
        io = IOStream.get_default()
        if self.streams:
            for chunk in self.chunks:
                io.print(chunk, end="", flush=True)
            io.print("\n")
        return SimpleNamespace(text="".join(self.chunks))

    def extract_text_or_completion_object(self, response):
        return [response.text]


class SilentWrapper(FakeWrapper):
    streams = False


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr("skkn_writer.llm_client.autogen.OpenAIWrapper", FakeWrapper)
    chat = AutogenChatClient(ProjectConfig())
    chat.initialize("key-one-aaaa")
    return chat


class TestAutogenChatClient:
    def test_initialize_builds_wrapper(self, client):
        entry = client._client.llm_config["config_list"][0]
        assert entry["api_key"] == "key-one-aaaa"
        assert entry["model"] == "gemini-2.5-flash"
        assert client.initialized

    def test_streams_chunks_and_records_history(self, client):
        chunks: list[str] = []
        text = client.send_stream("Viết dàn ý", chunks.append)
        assert text == "Xin chào thầy cô."
        assert chunks == FakeWrapper.chunks
        assert client.get_history() == [
            ChatTurn(role="user", text="Viết dàn ý"),
            ChatTurn(role="model", text="Xin chào thầy cô."),
        ]

    def test_history_is_sent_with_next_prompt(self, client):
        client.send_stream("Bước 1", lambda _c: None)
        client.send_stream("Bước 2", lambda _c: None)
        messages = client._client.calls[-1]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[-1]["content"] == "Bước 2"

    def test_non_streaming_endpoint_delivers_whole_reply(self, monkeypatch):
        monkeypatch.setattr("skkn_writer.llm_client.autogen.OpenAIWrapper", SilentWrapper)
        chat = AutogenChatClient(ProjectConfig())
        chat.initialize("k", model="gemini-2.5-pro")
        chunks: list[str] = []
        chat.send_stream("x", chunks.append)
        assert chunks == ["Xin chào thầy cô."]
        assert chat.model == "gemini-2.5-pro"

    def test_initialize_resets_history(self, client):
        client.send_stream("x", lambda _c: None)
        client.initialize("key-two-bbbb")
        assert client.get_history() == []

    def test_set_history(self, client):
        history = [ChatTurn(role="user", text="a"), ChatTurn(role="model", text="b")]
        client.set_history(history)
        assert client.get_history() == history

    def test_uninitialized_client_raises(self):
        with pytest.raises(RuntimeError):
            AutogenChatClient(ProjectConfig()).send_stream("x", lambda _c: None)


class TestCancellation:
    def test_cancelled_before_send(self, client):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(GenerationCancelled):
            client.send_stream("x", lambda _c: None, token)
        assert client._client.calls == []

    def test_cancelled_mid_stream_keeps_history(self, client):
        token = CancellationToken()
        received: list[str] = []

        def on_chunk(text):
            received.append(text)
            token.cancel()

        with pytest.raises(GenerationCancelled):
            client.send_stream("x", on_chunk, token)
        assert received == ["Xin "]
        assert client.get_history() == []


class TestChunkStream:
    def test_print_forwards_only_streamed_tokens(self):
        out: list[str] = []
        stream = _ChunkStream(out.append, None)
        stream.print("token", end="")
        stream.print("[autogen chatter]")
        assert out == ["token"]
        assert stream.received == 5

    def test_send_unwraps_message_content(self):
        out: list[str] = []
        stream = _ChunkStream(out.append, None)
        stream.send(SimpleNamespace(content=SimpleNamespace(content="nội dung")))
        stream.send(SimpleNamespace(content=None))
        assert out == ["nội dung"]

    def test_input_is_refused(self):
        with pytest.raises(RuntimeError):
            _ChunkStream(lambda _c: None, None).input("?")
