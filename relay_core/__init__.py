"""Relay Core 顶层包。

把企业微信等消息通道收到的文本转发给 OpenAI / Gemini / Claude，
生成较快时同步回复，较慢时通过推送回调异步送达。包括配置加载、
领域模型、Provider 适配、流式解析、会话历史存储与对话编排。
"""

from relay_core.api.service import TextMessageHandler, build_chatbot
from relay_core.chatbot.orchestrator import Chatbot

__all__ = ["Chatbot", "TextMessageHandler", "build_chatbot"]
