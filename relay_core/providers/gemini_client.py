"""Gemini 适配器（google-genai SDK，请求/应答模式）。

Gemini 要求 history 严格成对：user、model 交替且从 user 开始。
历史不合法时直接丢弃、用空上下文继续请求，否则整个请求会被 400 拒绝。
SDK 调用放在后台线程，结果或错误都通过 slot 交给 waiter。
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from google import genai
from google.genai import types

from relay_core.config.settings import settings
from relay_core.domain.exceptions import ProtocolError, SessionPairingError, ValidationError
from relay_core.domain.models import ROLE_ASSISTANT, ROLE_USER, ChatMessage, ProviderKind
from relay_core.domain.session import SessionStore
from relay_core.infrastructure.logging.logger import log_event
from relay_core.providers.base import AdapterReply, load_history, record_message
from relay_core.providers.registry import GEMINI_CONFIG

GEMINI_ROLE_USER = "user"
GEMINI_ROLE_MODEL = "model"


def to_gemini_role(message: ChatMessage) -> str:
    return GEMINI_ROLE_MODEL if message.role == ROLE_ASSISTANT else GEMINI_ROLE_USER


def validate_alternation(history: List[ChatMessage]) -> None:
    """校验历史是否为完整的 user/model 对。

    Raises:
        SessionPairingError: 角色没有从 user 开始严格交替，或最后一轮缺少 model 回复。
    """

    if len(history) % 2 != 0:
        raise SessionPairingError(code="HISTORY_UNPAIRED", message=f"history has odd length {len(history)}")
    for idx, message in enumerate(history):
        expected = GEMINI_ROLE_USER if idx % 2 == 0 else GEMINI_ROLE_MODEL
        if to_gemini_role(message) != expected:
            raise SessionPairingError(
                code="HISTORY_UNPAIRED",
                message=f"history[{idx}] role {to_gemini_role(message)!r}, expected {expected!r}",
            )


def extract_text(resp: Any) -> str:
    """从 GenerateContentResponse 中取第一段文本。"""

    candidates = getattr(resp, "candidates", None) or []
    if not candidates:
        raise ProtocolError(code="INVALID_RESPONSE", message="response candidates empty")
    content = getattr(candidates[0], "content", None)
    if content is None:
        raise ProtocolError(code="INVALID_RESPONSE", message="response content invalid")
    parts = getattr(content, "parts", None) or []
    if not parts:
        raise ProtocolError(code="INVALID_RESPONSE", message="response parts empty")
    text = getattr(parts[0], "text", None)
    if not isinstance(text, str) or not text:
        raise ProtocolError(code="INVALID_RESPONSE", message="response parts not text")
    return text


class GeminiAdapter:
    """Gemini Provider 适配器。"""

    kind = ProviderKind.GEMINI

    def __init__(self, sessions: SessionStore, cfg=settings, client: Optional[Any] = None):
        self._sessions = sessions
        self._settings = cfg
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not getattr(self._settings, "gemini_api_key", None):
                raise ValidationError(code="MISSING_API_KEY", message="GEMINI_API_KEY not set")
            self._client = genai.Client(api_key=self._settings.gemini_api_key)
        return self._client

    def send(self, user_id: str, text: str, slot) -> AdapterReply:
        log_ctx = {"user_id": user_id, "provider": self.kind.value}
        client = self._get_client()
        history = self.build_history(load_history(self._sessions, user_id, self.kind), log_ctx)
        chat = client.chats.create(model=self._settings.gemini_model, history=history)

        worker = threading.Thread(
            target=self._request,
            args=(chat, text, slot, log_ctx),
            name=f"gemini-request-{user_id}",
            daemon=True,
        )
        worker.start()

        # 请求发出之后再记录本条提问，保证上面的 history 不含它
        record_message(self._sessions, user_id, text, ROLE_USER, self.kind)
        return AdapterReply(text=GEMINI_CONFIG.pending_reply, asynchronous=True)

    def build_history(self, history: List[ChatMessage], log_ctx: Dict[str, Any]) -> List[types.Content]:
        try:
            validate_alternation(history)
        except SessionPairingError as e:
            log_event(logging.ERROR, "history invalid, discarded", log_ctx, error=e.message, size=len(history))
            return []
        return [
            types.Content(role=to_gemini_role(m), parts=[types.Part(text=m.content)])
            for m in history
        ]

    @staticmethod
    def _request(chat: Any, text: str, slot, log_ctx: Dict[str, Any]) -> None:
        try:
            resp = chat.send_message(text)
        except Exception as e:  # SDK 的网络、鉴权、配额错误统一转成回复内容
            log_event(logging.ERROR, "gemini send_message failed", log_ctx, error=str(e))
            slot.cached_content = str(e)
            slot.mailbox.close()
            return

        try:
            content = extract_text(resp)
        except ProtocolError as e:
            log_event(logging.ERROR, "gemini response invalid", log_ctx, error=e.message)
            slot.cached_content = e.message
            slot.mailbox.close()
            return

        log_event(logging.INFO, "gemini response received", log_ctx, length=len(content))
        if not slot.mailbox.offer(content):
            log_event(logging.ERROR, "push gemini response into mailbox failed", log_ctx)
