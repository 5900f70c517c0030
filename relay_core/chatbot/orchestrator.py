"""Chatbot 编排核心。

get_response() 是传输层的唯一入口，每次调用按下面的顺序处理：

1. 用户指令（默认“继续”）：有缓存结果则取走并清除 slot；否则按是否仍在生成
   返回不同的提示。
2. 该用户已有未过期的 slot：直接返回“处理中”提示，不再发起上游请求，
   即使当前没有可用的适配器。
3. 创建 slot，选定第一个启用的适配器并调用。适配器同步返回时直接回复；
   异步返回时启动一个 waiter 线程，等待结果后通过 publisher 推送。

所有失败都降级为文本回复，不会抛给传输层。
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from relay_core.chatbot.response_cache import ResponseCache, ResponseSlot
from relay_core.domain.exceptions import BusinessError, ProviderError
from relay_core.domain.models import ROLE_ASSISTANT, ProviderKind
from relay_core.domain.session import SessionStore
from relay_core.infrastructure.logging.logger import log_event
from relay_core.providers import select_adapter
from relay_core.providers.base import ProviderAdapter, record_message


REPLY_STILL_GENERATING = "后台数据生成中，请稍后，生成完成会进行推送~"
REPLY_IN_FLIGHT = "有提问在后台数据生成中，请稍后，生成完成会进行推送~"
REPLY_NOTHING_TO_CONTINUE = "当前没有需要继续获取的回复，请直接提问~"
REPLY_NO_PROVIDER = "no ai support"
REPLY_FAILED = "抱歉，AI 服务暂时不可用，请稍后再试~"

Publisher = Callable[[str, str], Any]


class Chatbot:
    def __init__(
        self,
        sessions: SessionStore,
        cache: ResponseCache,
        adapters: List[ProviderAdapter],
        publisher: Optional[Publisher] = None,
        continue_phrase: str = "继续",
    ):
        self._sessions = sessions
        self._cache = cache
        self._adapters = list(adapters)
        self._publisher = publisher
        self._continue_phrase = continue_phrase

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    def register_publisher(self, publisher: Publisher) -> None:
        """注册异步推送回调 publisher(user_id, content)，抛出异常视为推送失败。"""

        self._publisher = publisher

    def get_response(self, user_id: str, text: str) -> str:
        log_ctx: Dict[str, Any] = {"user_id": user_id}

        if text.strip() == self._continue_phrase:
            return self._continue(user_id)

        adapter = select_adapter(self._adapters)
        slot = self._cache.try_acquire(user_id, adapter.kind if adapter else None)
        if slot is None:
            log_event(logging.INFO, "request rejected, another one in flight", log_ctx)
            return REPLY_IN_FLIGHT
        if adapter is None:
            self._cache.clear(user_id, slot)
            return REPLY_NO_PROVIDER
        log_ctx["provider"] = adapter.kind.value

        try:
            reply = adapter.send(user_id, text, slot)
        except ProviderError as e:
            log_event(logging.ERROR, "provider reported error", log_ctx, code=e.code, error=e.message)
            self._cache.clear(user_id, slot)
            return e.message
        except BusinessError as e:
            log_event(logging.ERROR, "provider request failed", log_ctx, code=e.code, error=e.message)
            self._cache.clear(user_id, slot)
            return REPLY_FAILED
        except Exception as e:  # 回包结构异常等非预期错误同样降级为文本回复
            log_event(logging.ERROR, "provider request crashed", log_ctx, error=repr(e))
            self._cache.clear(user_id, slot)
            return REPLY_FAILED

        if reply.asynchronous:
            self._spawn_waiter(user_id, slot)
            return reply.text

        record_message(self._sessions, user_id, reply.text, ROLE_ASSISTANT, adapter.kind)
        self._cache.clear(user_id, slot)
        return reply.text

    def _continue(self, user_id: str) -> str:
        # 已到手的结果不受 TTL 限制，过期 slot 中的内容仍可取回
        cached = self._cache.peek_cached(user_id)
        if cached:
            self._cache.clear(user_id)
            return cached
        if self._cache.is_pending(user_id):
            return REPLY_STILL_GENERATING
        return REPLY_NOTHING_TO_CONTINUE

    def _spawn_waiter(self, user_id: str, slot: ResponseSlot) -> threading.Thread:
        waiter = threading.Thread(
            target=self.wait_response,
            args=(user_id, slot),
            name=f"waiter-{user_id}",
            daemon=True,
        )
        waiter.start()
        return waiter

    def wait_response(self, user_id: str, slot: ResponseSlot) -> None:
        """等待 slot 的异步结果并推送。

        推送失败时保留 slot 与 cached_content，用户仍可用“继续”取回；
        超时则关闭 mailbox，之后迟到的结果会被丢弃。
        """

        provider: Optional[ProviderKind] = slot.provider
        log_ctx: Dict[str, Any] = {"user_id": user_id, "provider": provider.value if provider else None}

        content = slot.mailbox.receive(timeout=self._cache.ttl)
        if content is None:
            slot.mailbox.close()
            log_event(logging.WARNING, "wait response timeout", log_ctx, ttl=self._cache.ttl)
            return

        if content:
            if provider is not None:
                record_message(self._sessions, user_id, content, ROLE_ASSISTANT, provider)
            slot.cached_content = content
            log_event(logging.INFO, "wait response success", log_ctx)
        else:
            # 异常结束，适配器已把错误描述写入 cached_content
            content = slot.cached_content or REPLY_FAILED
            slot.cached_content = content
            log_event(logging.WARNING, "upstream failed, deliver fallback content", log_ctx)

        if self._publisher is None:
            log_event(logging.ERROR, "no publisher registered", log_ctx)
            return
        try:
            self._publisher(user_id, content)
        except Exception as e:  # publisher 由传输层提供，任何异常都视为推送失败
            log_event(logging.ERROR, "publish message failed", log_ctx, error=str(e))
            return

        log_event(logging.INFO, "publish message success", log_ctx)
        self._cache.clear(user_id, slot)
