"""Claude Messages API 适配器（普通 HTTP，后台回调）。

- URL: {base_url}/v1/messages
- 认证: x-api-key + anthropic-version

请求在后台线程发出；非 200、回包格式错误或 error 负载都会把错误描述写进
slot.cached_content 并关闭 mailbox，waiter 会把它作为回复推送出去。
"""

import logging
import threading
from typing import Any, Dict, List

import httpx

from relay_core.config.settings import settings
from relay_core.domain.exceptions import (
    BusinessError,
    ProtocolError,
    ProviderError,
    TransportError,
    ValidationError,
)
from relay_core.domain.models import ROLE_USER, ChatMessage, ProviderKind
from relay_core.domain.session import SessionStore
from relay_core.infrastructure.logging.logger import log_event
from relay_core.providers.base import AdapterReply, load_history, record_message
from relay_core.providers.registry import ANTHROPIC_VERSION, CLAUDE_CONFIG


def pair_messages(history: List[ChatMessage]) -> List[Dict[str, str]]:
    """整理成 Messages API 可接受的序列。

    第一条必须是 user；相邻两条角色相同时后一条覆盖前一条。
    """

    paired: List[Dict[str, str]] = []
    for message in history:
        if not paired and message.role != ROLE_USER:
            continue
        item = {"role": message.role, "content": message.content}
        if paired and paired[-1]["role"] == message.role:
            paired[-1] = item
            continue
        paired.append(item)
    return paired


class ClaudeAdapter:
    """Claude Provider 适配器。"""

    kind = ProviderKind.CLAUDE

    def __init__(self, sessions: SessionStore, cfg=settings):
        self._sessions = sessions
        self._settings = cfg

    def send(self, user_id: str, text: str, slot) -> AdapterReply:
        if not getattr(self._settings, "claude_api_key", None):
            raise ValidationError(code="MISSING_API_KEY", message="CLAUDE_API_KEY not set")
        log_ctx = {"user_id": user_id, "provider": self.kind.value}

        record_message(self._sessions, user_id, text, ROLE_USER, self.kind)
        payload = {
            "model": self._settings.claude_model,
            "max_tokens": self._settings.claude_max_tokens,
            "messages": pair_messages(load_history(self._sessions, user_id, self.kind)),
            "metadata": {"user_id": user_id},
        }

        worker = threading.Thread(
            target=self._post,
            args=(payload, slot, log_ctx),
            name=f"claude-request-{user_id}",
            daemon=True,
        )
        worker.start()
        return AdapterReply(text=CLAUDE_CONFIG.pending_reply, asynchronous=True)

    def _post(self, payload: Dict[str, Any], slot, log_ctx: Dict[str, Any]) -> None:
        delivered = False
        try:
            content = self.request(payload)
            log_event(logging.INFO, "claude response received", log_ctx, length=len(content))
            delivered = slot.mailbox.offer(content)
            if not delivered:
                log_event(logging.ERROR, "push claude response into mailbox failed", log_ctx)
        except BusinessError as e:
            log_event(logging.ERROR, "claude request failed", log_ctx, code=e.code, error=e.message)
            slot.cached_content = e.message
        except Exception as e:  # 后台线程内的任何异常都要让 waiter 醒来
            log_event(logging.ERROR, "claude request crashed", log_ctx, error=repr(e))
            slot.cached_content = f"Claude request failed: {e}"
        finally:
            if not delivered:
                slot.mailbox.close()

    def request(self, payload: Dict[str, Any]) -> str:
        """同步调用 Messages API，返回第一段文本。"""

        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{self._settings.claude_base_url.rstrip('/')}/{CLAUDE_CONFIG.chat_path}",
                    json=payload,
                    headers={
                        "x-api-key": self._settings.claude_api_key,
                        "anthropic-version": ANTHROPIC_VERSION,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            raise TransportError(code="NETWORK_ERROR", message=str(e))

        try:
            data = resp.json()
        except ValueError:
            raise ProtocolError(
                code="INVALID_RESPONSE",
                message=f"Claude response is not JSON, status={resp.status_code}",
                http_status=resp.status_code,
            )

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError(code="PROVIDER_ERROR", message=message or "Claude returned an error")
        if resp.status_code != 200:
            raise TransportError(
                code="API_ERROR",
                message=f"Claude API returned {resp.status_code} status code",
                http_status=resp.status_code,
            )

        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list) or not blocks:
            raise ProtocolError(code="INVALID_RESPONSE", message="Claude response content empty")
        if not isinstance(blocks[0], dict):
            raise ProtocolError(code="INVALID_RESPONSE", message="Claude response content block is not an object")
        text = blocks[0].get("text")
        if not isinstance(text, str):
            raise ProtocolError(code="INVALID_RESPONSE", message="Claude response content not text")
        return text
