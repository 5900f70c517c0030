import threading
from collections import deque
from typing import Deque, Dict, List, Tuple

from relay_core.domain.models import ChatMessage, ProviderKind
from relay_core.domain.session import SessionStore


class InMemorySessionStore(SessionStore):
    """进程内会话历史，每个 (user_id, provider) 一个定长 deque。

    条目在首条消息时创建，之后不会删除；超过容量时最旧的消息被挤出。
    """

    def __init__(self, capacity: int = 6):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._sessions: Dict[Tuple[str, ProviderKind], Deque[ChatMessage]] = {}
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, user_id: str, message: ChatMessage) -> None:
        key = (user_id, message.provider)
        with self._lock:
            ctx = self._sessions.get(key)
            if ctx is None:
                ctx = deque(maxlen=self._capacity)
                self._sessions[key] = ctx
            ctx.append(message)

    def history(self, user_id: str, provider: ProviderKind) -> List[ChatMessage]:
        with self._lock:
            ctx = self._sessions.get((user_id, provider))
            return list(ctx) if ctx else []
