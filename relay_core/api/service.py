"""对传输层暴露的服务接口。

传输层（企业微信/微信回调服务）负责验签、解密与消息去重，
收到文本消息后调用 TextMessageHandler.handle_message 取得同步回复，
并通过 Chatbot.register_publisher 注册主动推送函数用于异步送达。
"""

from typing import Optional

from relay_core.chatbot.orchestrator import Chatbot, Publisher
from relay_core.chatbot.response_cache import ResponseCache
from relay_core.config.settings import settings
from relay_core.infrastructure.logging.logger import logger
from relay_core.infrastructure.storage.factory import create_session_store
from relay_core.providers import create_adapters


def build_chatbot(cfg=None, publisher: Optional[Publisher] = None) -> Chatbot:
    """按配置组装 Chatbot：会话存储、回包缓存、已启用的适配器。"""

    cfg = cfg or settings
    sessions = create_session_store(cfg)
    adapters = create_adapters(sessions, cfg)
    if not adapters:
        logger.warning("No provider enabled, every request will get a fallback reply")
    for adapter in adapters:
        logger.info(f"create {adapter.kind.value} adapter")
    return Chatbot(
        sessions=sessions,
        cache=ResponseCache(ttl=cfg.response_ttl),
        adapters=adapters,
        publisher=publisher,
        continue_phrase=cfg.continue_phrase,
    )


class TextMessageHandler:
    """文本消息处理器，传输层每收到一条用户文本调用一次。"""

    def __init__(self, chatbot: Chatbot):
        self._chatbot = chatbot

    def handle_message(self, user_id: str, content: str) -> str:
        """返回需要同步回复给用户的文本。

        Args:
            user_id: 消息来源用户ID
            content: 文本内容

        Returns:
            最终回复，或“生成中”一类的占位提示
        """
        return self._chatbot.get_response(user_id, content)
