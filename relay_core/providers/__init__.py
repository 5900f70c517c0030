"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 适配器接口 (base)。
- 维护各 Provider 的静态配置 (registry)。
- 解析流式回包 (stream_decoder)。
- 提供各厂商的具体实现 (openai_client、gemini_client、claude_client)。
"""

from typing import Callable, Dict, List, Optional

from relay_core.config.settings import settings
from relay_core.domain.models import ProviderKind
from relay_core.domain.session import SessionStore
from relay_core.infrastructure.logging.logger import logger
from relay_core.providers.base import ProviderAdapter
from relay_core.providers.claude_client import ClaudeAdapter
from relay_core.providers.gemini_client import GeminiAdapter
from relay_core.providers.openai_client import OpenAIAdapter


ADAPTER_FACTORIES: Dict[ProviderKind, Callable[..., ProviderAdapter]] = {
    ProviderKind.OPENAI: OpenAIAdapter,
    ProviderKind.GEMINI: GeminiAdapter,
    ProviderKind.CLAUDE: ClaudeAdapter,
}


def is_enabled(kind: ProviderKind, cfg) -> bool:
    return bool(getattr(cfg, f"{kind.value}_enable", False))


def create_adapters(sessions: SessionStore, cfg=None) -> List[ProviderAdapter]:
    """按 provider_priority 顺序创建已启用的适配器，默认取模块级 settings。"""

    cfg = cfg or settings
    adapters: List[ProviderAdapter] = []
    seen = set()
    for name in getattr(cfg, "provider_priority", [k.value for k in ProviderKind]):
        try:
            kind = ProviderKind(name)
        except ValueError:
            logger.warning(f"Unknown provider in priority list: {name!r}")
            continue
        if kind in seen or not is_enabled(kind, cfg):
            continue
        seen.add(kind)
        adapters.append(ADAPTER_FACTORIES[kind](sessions, cfg))
    return adapters


def select_adapter(adapters: List[ProviderAdapter]) -> Optional[ProviderAdapter]:
    """第一个启用的适配器生效。"""

    return adapters[0] if adapters else None
