import httpx
import pytest

from relay_core.chatbot.response_cache import ResponseCache
from relay_core.domain.exceptions import ProtocolError, TransportError, ValidationError
from relay_core.domain.models import ChatMessage, ProviderKind
from relay_core.infrastructure.storage.memory_store import InMemorySessionStore
from relay_core.providers.openai_client import OpenAIAdapter


class SettingsStub:
    openai_api_key = "sk-test-0123456789"
    openai_base_url = "https://api.openai.com"
    openai_model = "gpt-3.5-turbo"
    http_timeout = 1.0
    stream_max_empty_messages = 10
    stream_max_wait = 60.0
    continue_phrase = "继续"


class FakeResponse:
    def __init__(self, status_code=200, content_type="application/json", body=None, lines=None):
        self.status_code = status_code
        self.headers = {"content-type": content_type}
        self._body = body
        self._lines = list(lines or [])
        self.closed = False

    def iter_lines(self):
        for line in self._lines:
            yield line

    def read(self):
        return b""

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body

    def close(self):
        self.closed = True


def _patch_client(monkeypatch, response=None, error=None):
    captured = {}

    class Client:
        def __init__(self, *a, **kw):
            pass

        def build_request(self, method, url, json=None, headers=None):
            captured.update(method=method, url=url, payload=json, headers=headers)
            return object()

        def send(self, request, stream=False):
            captured["stream"] = stream
            if error is not None:
                raise error
            return response

        def close(self):
            pass

    monkeypatch.setattr("httpx.Client", Client)
    return captured


def _adapter():
    sessions = InMemorySessionStore()
    return OpenAIAdapter(sessions, SettingsStub()), sessions


def test_event_stream_returns_placeholder_and_fills_mailbox(monkeypatch):
    resp = FakeResponse(
        content_type="text/event-stream; charset=utf-8",
        lines=['data: {"choices": [{"delta": {"content": "Hi"}}]}', 'data: {"choices": [{"delta": {"content": " there"}}]}', "data: [DONE]"],
    )
    captured = _patch_client(monkeypatch, response=resp)
    adapter, sessions = _adapter()
    slot = ResponseCache().build_or_refresh("alice")

    reply = adapter.send("alice", "hello", slot)

    assert reply.asynchronous
    assert "继续" in reply.text
    assert slot.mailbox.receive(timeout=2) == "Hi there"
    assert captured["url"] == "https://api.openai.com/v1/chat/completions"
    assert captured["stream"] is True
    assert captured["payload"]["stream"] is True
    assert captured["payload"]["user"] == "alice"
    assert captured["payload"]["messages"] == [{"role": "user", "content": "hello"}]
    assert captured["headers"]["Authorization"] == "Bearer sk-test-0123456789"
    history = sessions.history("alice", ProviderKind.OPENAI)
    assert [(m.role, m.content) for m in history] == [("user", "hello")]


def test_json_body_is_returned_synchronously(monkeypatch):
    resp = FakeResponse(body={"choices": [{"index": 0, "message": {"role": "assistant", "content": "ok"}}]})
    _patch_client(monkeypatch, response=resp)
    adapter, _ = _adapter()

    reply = adapter.send("bob", "hi", ResponseCache().build_or_refresh("bob"))

    assert not reply.asynchronous
    assert reply.text == "ok"
    assert resp.closed


def test_history_is_sent_with_assistant_role(monkeypatch):
    resp = FakeResponse(body={"choices": [{"message": {"content": "fine"}}]})
    captured = _patch_client(monkeypatch, response=resp)
    adapter, sessions = _adapter()

    sessions.append("carol", ChatMessage(content="q1", role="user", provider=ProviderKind.OPENAI))
    sessions.append("carol", ChatMessage(content="a1", role="assistant", provider=ProviderKind.OPENAI))
    adapter.send("carol", "q2", ResponseCache().build_or_refresh("carol"))

    assert [m["role"] for m in captured["payload"]["messages"]] == ["user", "assistant", "user"]


def test_non_200_raises_transport_error(monkeypatch):
    resp = FakeResponse(status_code=500)
    _patch_client(monkeypatch, response=resp)
    adapter, _ = _adapter()
    with pytest.raises(TransportError) as exc:
        adapter.send("dave", "hi", ResponseCache().build_or_refresh("dave"))
    assert exc.value.http_status == 500
    assert resp.closed


def test_network_error_raises_transport_error(monkeypatch):
    _patch_client(monkeypatch, error=httpx.ConnectError("boom"))
    adapter, _ = _adapter()
    with pytest.raises(TransportError) as exc:
        adapter.send("erin", "hi", ResponseCache().build_or_refresh("erin"))
    assert exc.value.code == "NETWORK_ERROR"


def test_malformed_body_raises_protocol_error(monkeypatch):
    _patch_client(monkeypatch, response=FakeResponse(body=ValueError("bad json")))
    adapter, _ = _adapter()
    with pytest.raises(ProtocolError):
        adapter.send("frank", "hi", ResponseCache().build_or_refresh("frank"))


@pytest.mark.parametrize("choices", [["oops"], [{"message": "oops"}]])
def test_non_object_choice_raises_protocol_error(monkeypatch, choices):
    _patch_client(monkeypatch, response=FakeResponse(body={"choices": choices}))
    adapter, _ = _adapter()
    with pytest.raises(ProtocolError) as exc:
        adapter.send("frank", "hi", ResponseCache().build_or_refresh("frank"))
    assert exc.value.code == "INVALID_RESPONSE"


def test_missing_api_key():
    class NoKey(SettingsStub):
        openai_api_key = None

    adapter = OpenAIAdapter(InMemorySessionStore(), NoKey())
    with pytest.raises(ValidationError):
        adapter.send("gina", "hi", ResponseCache().build_or_refresh("gina"))
