from typing import List, Protocol

from .models import ChatMessage, ProviderKind


class SessionStore(Protocol):
    """按 (user_id, provider) 保存有界的会话历史。"""

    def append(self, user_id: str, message: ChatMessage) -> None:
        ...

    def history(self, user_id: str, provider: ProviderKind) -> List[ChatMessage]:
        """返回最近的消息，按时间从旧到新排列。"""

        ...
