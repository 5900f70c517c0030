"""用户回包缓存。

每个用户至多一个 ResponseSlot，既是并发闸门（存在即表示有请求在处理），
也是异步结果的暂存处。过期采用惰性检查：只有访问时才判断并删除，
没有后台清理线程。
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from relay_core.chatbot.mailbox import Mailbox
from relay_core.domain.models import ProviderKind


@dataclass
class ResponseSlot:
    created_at: float
    provider: Optional[ProviderKind] = None
    cached_content: str = ""
    mailbox: Mailbox = field(default_factory=Mailbox)


class ResponseCache:
    def __init__(self, ttl: float = 120.0, clock: Callable[[], float] = time.time):
        self._ttl = ttl
        self._clock = clock
        self._slots: Dict[str, ResponseSlot] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def _live_slot(self, user_id: str) -> Optional[ResponseSlot]:
        # 调用方必须持有 self._lock
        slot = self._slots.get(user_id)
        if slot is not None and slot.created_at + self._ttl < self._clock():
            del self._slots[user_id]
            return None
        return slot

    def is_pending(self, user_id: str) -> bool:
        with self._lock:
            return self._live_slot(user_id) is not None

    def build_or_refresh(self, user_id: str) -> ResponseSlot:
        with self._lock:
            slot = self._slots.get(user_id)
            if slot is not None:
                slot.created_at = self._clock()
                return slot
            slot = ResponseSlot(created_at=self._clock())
            self._slots[user_id] = slot
            return slot

    def try_acquire(self, user_id: str, provider: Optional[ProviderKind] = None) -> Optional[ResponseSlot]:
        """原子地检查闸门并创建新 slot；已有未过期的 slot 时返回 None。"""

        with self._lock:
            if self._live_slot(user_id) is not None:
                return None
            slot = ResponseSlot(created_at=self._clock(), provider=provider)
            self._slots[user_id] = slot
            return slot

    def peek_cached(self, user_id: str) -> str:
        with self._lock:
            slot = self._slots.get(user_id)
            return slot.cached_content if slot else ""

    def clear(self, user_id: str, slot: Optional[ResponseSlot] = None) -> None:
        """删除用户的 slot。

        传入 slot 时只在它仍是当前 slot 时删除，避免迟到的 waiter 误删新请求。
        """

        with self._lock:
            current = self._slots.get(user_id)
            if current is None:
                return
            if slot is not None and current is not slot:
                return
            del self._slots[user_id]
