"""Provider 适配器抽象接口。

Chatbot 不直接依赖各厂商的 HTTP/SDK 细节，而是依赖此协议：

- 每个后端实现一个 ProviderAdapter（OpenAIAdapter、GeminiAdapter、ClaudeAdapter）。
- send() 要么同步返回最终文本，要么先返回“生成中”的占位文本，
  并在后台把结果投递到 slot.mailbox，由 Chatbot 启动 waiter 负责推送。
- 每次请求都恰好记录一条 user 消息到会话历史，记录时机由各适配器决定。
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Protocol

from relay_core.domain.exceptions import StoreError
from relay_core.domain.models import ChatMessage, ProviderKind, Role
from relay_core.domain.session import SessionStore
from relay_core.infrastructure.logging.logger import log_event

if TYPE_CHECKING:
    from relay_core.chatbot.response_cache import ResponseSlot


@dataclass
class AdapterReply:
    """适配器的即时回复。

    asynchronous 为 True 时 text 只是占位文本，真正的结果会写入 mailbox。
    """

    text: str
    asynchronous: bool = False


class ProviderAdapter(Protocol):
    kind: ProviderKind

    def send(self, user_id: str, text: str, slot: "ResponseSlot") -> AdapterReply:
        ...


def record_message(
    sessions: SessionStore,
    user_id: str,
    content: str,
    role: Role,
    provider: ProviderKind,
) -> None:
    """写入会话历史；存储失败只记日志，不影响本次回复。"""

    try:
        sessions.append(user_id, ChatMessage(content=content, role=role, provider=provider))
    except StoreError as e:
        log_event(logging.ERROR, "append session message failed", _ctx(user_id, provider), code=e.code, error=e.message)


def load_history(sessions: SessionStore, user_id: str, provider: ProviderKind) -> List[ChatMessage]:
    try:
        return sessions.history(user_id, provider)
    except StoreError as e:
        log_event(logging.ERROR, "load session history failed", _ctx(user_id, provider), code=e.code, error=e.message)
        return []


def _ctx(user_id: str, provider: ProviderKind) -> Dict[str, Any]:
    return {"user_id": user_id, "provider": provider.value}
