"""领域层模型与协议。

包含：
- models: ChatMessage / ProviderKind / ResponseSlot 等核心数据结构。
- session: 会话历史存储抽象 SessionStore。
- exceptions: 业务异常类型定义。
"""
