from relay_core.domain.session import SessionStore
from relay_core.infrastructure.storage.memory_store import InMemorySessionStore
from relay_core.infrastructure.storage.redis_store import RedisSessionStore


def create_session_store(cfg) -> SessionStore:
    """根据配置选择会话历史存储，默认进程内存。"""

    if getattr(cfg, "redis_enable", False):
        return RedisSessionStore.from_settings(cfg)
    return InMemorySessionStore(capacity=getattr(cfg, "session_capacity", 6))
