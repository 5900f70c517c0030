"""一次性的异步回包投递点。

生产者（流式读取线程、后台请求线程）只投递一次；消费者（waiter）阻塞等待，
带超时。投递永不阻塞：已有值或已关闭时直接丢弃并返回 False，
这样即使 waiter 已经超时离开，生产者也不会被卡住。
"""

import threading
from typing import Optional


class Mailbox:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._value: Optional[str] = None
        self._closed = False

    def offer(self, value: str) -> bool:
        """非阻塞投递，成功返回 True。"""

        with self._lock:
            if self._ready.is_set():
                return False
            self._value = value
            self._ready.set()
            return True

    def close(self) -> None:
        """不带值地关闭，唤醒等待方；重复调用无副作用。"""

        with self._lock:
            if self._ready.is_set():
                return
            self._closed = True
            self._ready.set()

    @property
    def closed(self) -> bool:
        return self._closed

    def receive(self, timeout: Optional[float] = None) -> Optional[str]:
        """等待结果。

        Returns:
            超时返回 None；关闭且无值返回 ""；否则返回投递的文本。
        """

        if not self._ready.wait(timeout):
            return None
        with self._lock:
            return self._value or ""
