"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
由 Chatbot 统一捕获并降级为用户可读的文本回复，不会向传输层抛出。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "NETWORK_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、user_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class TransportError(BusinessError):
    """上游 HTTP/SDK 调用失败，例如连接失败、超时、非 200 状态码。"""


class ProtocolError(BusinessError):
    """上游返回的结构不符合预期。"""


class StreamDecodeError(BusinessError):
    """流式回包无法继续解析（空消息过多、帧格式错误）。"""


class ProviderError(BusinessError):
    """上游显式返回错误负载，错误信息本身会作为回复内容推送。"""


class SessionPairingError(BusinessError):
    """会话历史不满足 Provider 的角色交替要求，由适配器本地恢复。"""


class StoreError(BusinessError):
    """会话历史存储读写失败。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""
