"""OpenAI chat/completions 适配器（流式 HTTP）。

- URL: {base_url}/v1/chat/completions
- 认证: Authorization: Bearer <api_key>

请求总是带 stream=true：回包为 text/event-stream 时立即返回占位文本，
后台线程读流并把完整结果投递到 mailbox；回包为普通 JSON 时同步解析返回。
"""

import logging
import threading
from typing import Any, Dict, List

import httpx

from relay_core.config.settings import settings
from relay_core.domain.exceptions import ProtocolError, ProviderError, TransportError, ValidationError
from relay_core.domain.models import ROLE_USER, ChatMessage, ProviderKind
from relay_core.domain.session import SessionStore
from relay_core.infrastructure.logging.logger import log_event
from relay_core.providers.base import AdapterReply, load_history, record_message
from relay_core.providers.registry import OPENAI_CONFIG
from relay_core.providers.stream_decoder import StreamDecoder


class OpenAIAdapter:
    """OpenAI Provider 适配器。"""

    kind = ProviderKind.OPENAI

    def __init__(self, sessions: SessionStore, cfg=settings):
        self._sessions = sessions
        self._settings = cfg

    def send(self, user_id: str, text: str, slot) -> AdapterReply:
        if not getattr(self._settings, "openai_api_key", None):
            raise ValidationError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set")
        log_ctx = {"user_id": user_id, "provider": self.kind.value}

        # 多轮对话需要先保存本条提问，历史里才包含它
        record_message(self._sessions, user_id, text, ROLE_USER, self.kind)
        history = load_history(self._sessions, user_id, self.kind)
        payload = self._build_payload(user_id, history)

        client = httpx.Client(timeout=self._settings.http_timeout, trust_env=False)
        try:
            request = client.build_request(
                "POST",
                f"{self._settings.openai_base_url.rstrip('/')}/{OPENAI_CONFIG.chat_path}",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self._settings.openai_api_key}",
                    "Content-Type": "application/json",
                },
            )
            resp = client.send(request, stream=True)
        except httpx.RequestError as e:
            client.close()
            raise TransportError(code="NETWORK_ERROR", message=str(e))

        if resp.status_code != 200:
            resp.close()
            client.close()
            raise TransportError(
                code="API_ERROR",
                message=f"OpenAI API returned {resp.status_code} status code",
                http_status=resp.status_code,
            )

        content_type = resp.headers.get("content-type", "")
        if content_type.startswith("text/event-stream"):
            worker = threading.Thread(
                target=self._consume_stream,
                args=(client, resp, slot, log_ctx),
                name=f"openai-stream-{user_id}",
                daemon=True,
            )
            worker.start()
            log_event(logging.INFO, "openai stream started", log_ctx)
            pending = OPENAI_CONFIG.pending_reply.format(continue_phrase=self._settings.continue_phrase)
            return AdapterReply(text=pending, asynchronous=True)

        try:
            resp.read()
            data = resp.json()
        except httpx.HTTPError as e:
            raise TransportError(code="NETWORK_ERROR", message=str(e))
        except ValueError as e:
            raise ProtocolError(code="INVALID_RESPONSE", message=f"OpenAI response is not JSON: {e}")
        finally:
            resp.close()
            client.close()
        return AdapterReply(text=self._parse_response(data))

    # ---- 辅助方法 ----

    def _build_payload(self, user_id: str, history: List[ChatMessage]) -> Dict[str, Any]:
        return {
            "model": self._settings.openai_model,
            "messages": [{"role": m.role, "content": m.content} for m in history],
            "user": user_id,
            "stream": True,
        }

    def _consume_stream(self, client: httpx.Client, resp: httpx.Response, slot, log_ctx: Dict[str, Any]) -> None:
        try:
            decoder = StreamDecoder(
                resp.iter_lines(),
                max_empty_messages=self._settings.stream_max_empty_messages,
                max_wait=self._settings.stream_max_wait,
            )
            decoder.consume(slot.mailbox, log_ctx)
        finally:
            resp.close()
            client.close()

    @staticmethod
    def _parse_response(data: Any) -> str:
        if not isinstance(data, dict):
            raise ProtocolError(code="INVALID_RESPONSE", message="OpenAI response is not an object")
        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError(code="PROVIDER_ERROR", message=message or "OpenAI returned an error")
        choices = data.get("choices")
        if not isinstance(choices, list):
            raise ProtocolError(code="INVALID_RESPONSE", message="OpenAI response has no choices")
        parts = []
        for ch in choices:
            if not isinstance(ch, dict):
                raise ProtocolError(code="INVALID_RESPONSE", message="OpenAI response choice is not an object")
            msg = ch.get("message") or {}
            if not isinstance(msg, dict):
                raise ProtocolError(code="INVALID_RESPONSE", message="OpenAI response message is not an object")
            parts.append(msg.get("content") or "")
        return "".join(parts)
