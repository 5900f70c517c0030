"""统一的对话数据模型。

- ProviderKind: 后端 LLM 的种类标签，用于选择适配器以及区分会话历史。
- ChatMessage: 一条已发生的对话消息，创建后不可变。

各 Provider 适配器负责把 ChatMessage 转换成自家 API 需要的角色与结构
（例如 Gemini 把 assistant 称为 "model"）。
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Literal


# 会话中只记录用户与助手两种角色
Role = Literal["user", "assistant"]

ROLE_USER: Role = "user"
ROLE_ASSISTANT: Role = "assistant"


class ProviderKind(str, Enum):
    """支持的 LLM 后端。"""

    OPENAI = "openai"
    GEMINI = "gemini"
    CLAUDE = "claude"


@dataclass(frozen=True)
class ChatMessage:
    """一条对话消息。

    - content: 纯文本内容。
    - role: user / assistant。
    - provider: 产生或接收这条消息的后端。
    - timestamp: Unix 时间戳（秒）。
    """

    content: str
    role: Role
    provider: ProviderKind
    timestamp: float = field(default_factory=time.time)

    def to_record(self) -> Dict[str, Any]:
        """持久化格式，字段名与历史数据保持一致。"""

        return {
            "content": self.content,
            "ts": int(self.timestamp),
            "role": "ai" if self.role == ROLE_ASSISTANT else ROLE_USER,
            "ai": self.provider.value,
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "ChatMessage":
        role = data.get("role") or ROLE_USER
        return cls(
            content=data.get("content") or "",
            role=ROLE_USER if role == ROLE_USER else ROLE_ASSISTANT,
            provider=ProviderKind(data["ai"]),
            timestamp=float(data.get("ts") or 0),
        )
