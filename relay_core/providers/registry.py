"""Provider 静态配置。

把各后端固定不变的部分（默认地址、接口路径、占位回复）集中在这里，
可变的部分（密钥、模型名、是否启用）来自 settings。"""

from dataclasses import dataclass
from typing import Optional

from relay_core.domain.models import ProviderKind


@dataclass
class ProviderConfig:
    """某个 Provider 的静态配置。"""

    kind: ProviderKind
    # 异步生成时立即返回给用户的文本，可包含 {continue_phrase}
    pending_reply: str
    # 走 SDK 的 Provider 没有接口路径
    chat_path: Optional[str] = None


ANTHROPIC_VERSION = "2023-06-01"

OPENAI_CONFIG = ProviderConfig(
    kind=ProviderKind.OPENAI,
    chat_path="v1/chat/completions",
    pending_reply="OpenAI数据生成中，请稍后， 生成完成会进行推送~ \n也可输入:\"{continue_phrase}\"，获取结果~",
)

GEMINI_CONFIG = ProviderConfig(
    kind=ProviderKind.GEMINI,
    pending_reply="Gemini生成中...",
)

CLAUDE_CONFIG = ProviderConfig(
    kind=ProviderKind.CLAUDE,
    chat_path="v1/messages",
    pending_reply="Claude生成中...",
)
