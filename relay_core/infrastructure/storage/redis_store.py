import json
from typing import Any, List, Optional

import redis

from relay_core.domain.exceptions import StoreError
from relay_core.domain.models import ChatMessage, ProviderKind
from relay_core.domain.session import SessionStore
from relay_core.infrastructure.logging.logger import logger


def session_key(user_id: str, provider: ProviderKind) -> str:
    return f"chatbot-{provider.value}-{user_id}"


class RedisSessionStore(SessionStore):
    """把每条消息 RPUSH 到 Redis 列表，读取时只取最近 capacity 条。

    列表本身不做裁剪，持久化的完整性由 Redis 自身保证。redis-py 客户端经连接池
    线程安全，这里不加锁，不同用户的读写互不等待。
    """

    def __init__(self, client: Any, capacity: int = 6):
        self._client = client
        self._capacity = capacity

    @classmethod
    def from_settings(cls, cfg) -> "RedisSessionStore":
        host, _, port = cfg.redis_addr.partition(":")
        client = redis.Redis(
            host=host or "localhost",
            port=int(port or 6379),
            username=cfg.redis_username or None,
            password=cfg.redis_password or None,
            db=cfg.redis_db,
            socket_connect_timeout=5,
            health_check_interval=30,
        )
        return cls(client, capacity=cfg.session_capacity)

    def append(self, user_id: str, message: ChatMessage) -> None:
        key = session_key(user_id, message.provider)
        data = json.dumps(message.to_record(), ensure_ascii=False)
        try:
            self._client.rpush(key, data)
        except redis.RedisError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e), key=key)
        logger.info("redis RPUSH success", extra={"extra": {"key": key}})

    def history(self, user_id: str, provider: ProviderKind) -> List[ChatMessage]:
        key = session_key(user_id, provider)
        try:
            rows = self._client.lrange(key, -self._capacity, -1)
        except redis.RedisError as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e), key=key)

        messages: List[ChatMessage] = []
        for raw in rows or []:
            msg = self._decode(raw)
            if msg is not None:
                messages.append(msg)
        return messages

    @staticmethod
    def _decode(raw: Any) -> Optional[ChatMessage]:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            return ChatMessage.from_record(json.loads(raw))
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            logger.error(f"skip undecodable session entry: {e}")
            return None
