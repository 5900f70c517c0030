from types import SimpleNamespace

import pytest

from relay_core.chatbot.response_cache import ResponseCache
from relay_core.domain.exceptions import ProtocolError, SessionPairingError
from relay_core.domain.models import ChatMessage, ProviderKind
from relay_core.infrastructure.storage.memory_store import InMemorySessionStore
from relay_core.providers.gemini_client import GeminiAdapter, extract_text, validate_alternation


class SettingsStub:
    gemini_api_key = "gm-test-0123456789"
    gemini_model = "gemini-pro"


def _msg(content, role):
    return ChatMessage(content=content, role=role, provider=ProviderKind.GEMINI)


def _text_response(text):
    part = SimpleNamespace(text=text)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


class FakeChat:
    def __init__(self, result):
        self._result = result
        self.sent = []

    def send_message(self, text):
        self.sent.append(text)
        if isinstance(self._result, Exception):
            raise self._result
        return self._result


class FakeClient:
    def __init__(self, result):
        self.chat = FakeChat(result)
        self.created = []
        self.chats = self

    def create(self, model, history):
        self.created.append({"model": model, "history": history})
        return self.chat


def test_validate_alternation_rejects_unbalanced_history():
    history = [_msg("a", "user"), _msg("b", "user"), _msg("c", "assistant"), _msg("d", "user")]
    with pytest.raises(SessionPairingError):
        validate_alternation(history)


def test_validate_alternation_accepts_pairs():
    validate_alternation([])
    validate_alternation([_msg("q", "user"), _msg("a", "assistant"), _msg("q2", "user"), _msg("a2", "assistant")])


def test_malformed_history_is_discarded_not_raised():
    adapter = GeminiAdapter(InMemorySessionStore(), SettingsStub(), client=FakeClient(_text_response("x")))
    history = [_msg("a", "user"), _msg("b", "user"), _msg("c", "user"), _msg("d", "assistant")]
    assert adapter.build_history(history, {}) == []


def test_valid_history_maps_assistant_to_model():
    adapter = GeminiAdapter(InMemorySessionStore(), SettingsStub(), client=FakeClient(_text_response("x")))
    contents = adapter.build_history([_msg("q", "user"), _msg("a", "assistant")], {})
    assert [c.role for c in contents] == ["user", "model"]
    assert contents[1].parts[0].text == "a"


def test_send_delivers_text_and_records_user_after_call():
    sessions = InMemorySessionStore()
    sessions.append("alice", _msg("q1", "user"))
    sessions.append("alice", _msg("a1", "assistant"))
    client = FakeClient(_text_response("Hi there"))
    adapter = GeminiAdapter(sessions, SettingsStub(), client=client)
    slot = ResponseCache().build_or_refresh("alice")

    reply = adapter.send("alice", "hello", slot)

    assert reply.asynchronous
    assert reply.text == "Gemini生成中..."
    assert slot.mailbox.receive(timeout=2) == "Hi there"
    assert client.chat.sent == ["hello"]
    assert client.created[0]["model"] == "gemini-pro"
    assert len(client.created[0]["history"]) == 2
    assert [m.content for m in sessions.history("alice", ProviderKind.GEMINI)] == ["q1", "a1", "hello"]


def test_sdk_error_is_cached_and_mailbox_closed():
    adapter = GeminiAdapter(InMemorySessionStore(), SettingsStub(), client=FakeClient(RuntimeError("quota exceeded")))
    slot = ResponseCache().build_or_refresh("bob")
    adapter.send("bob", "hi", slot)
    assert slot.mailbox.receive(timeout=2) == ""
    assert slot.cached_content == "quota exceeded"


def test_empty_candidates_is_cached():
    adapter = GeminiAdapter(InMemorySessionStore(), SettingsStub(), client=FakeClient(SimpleNamespace(candidates=[])))
    slot = ResponseCache().build_or_refresh("carol")
    adapter.send("carol", "hi", slot)
    assert slot.mailbox.receive(timeout=2) == ""
    assert slot.cached_content == "response candidates empty"


@pytest.mark.parametrize(
    "resp, message",
    [
        (SimpleNamespace(candidates=[SimpleNamespace(content=None)]), "response content invalid"),
        (SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[]))]), "response parts empty"),
        (SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[SimpleNamespace(text=None)]))]), "response parts not text"),
    ],
)
def test_extract_text_failures(resp, message):
    with pytest.raises(ProtocolError) as exc:
        extract_text(resp)
    assert exc.value.message == message
