"""SSE 流式回包解析。

每行一帧，去掉首尾空白后必须以 "data: " 开头：
- 不带前缀的行计为空消息，连续超过上限即判定流异常；
- "data: [DONE]" 表示正常结束；
- 其余内容按增量 JSON 解析，取出 delta 文本按到达顺序拼接。

除 [DONE] 外，读取总时长超过 max_wait 也会结束读取。
"""

import json
import logging
import time
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Union

import httpx

from relay_core.chatbot.mailbox import Mailbox
from relay_core.domain.exceptions import StreamDecodeError
from relay_core.infrastructure.logging.logger import log_event

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
MAX_EMPTY_MESSAGES = 10
MAX_STREAM_WAIT_SECS = 60.0


def extract_delta(payload: Any) -> str:
    """兼容 OpenAI 的 choices[].delta.content 以及简化的顶层 delta。"""

    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices")
    if isinstance(choices, list):
        return "".join(_delta_content(ch.get("delta")) for ch in choices if isinstance(ch, dict))
    return _delta_content(payload.get("delta"))


def _delta_content(delta: Any) -> str:
    if isinstance(delta, str):
        return delta
    if isinstance(delta, dict):
        content = delta.get("content")
        return content if isinstance(content, str) else ""
    return ""


class StreamDecoder:
    def __init__(
        self,
        lines: Iterable[Union[str, bytes]],
        *,
        max_empty_messages: int = MAX_EMPTY_MESSAGES,
        max_wait: float = MAX_STREAM_WAIT_SECS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._lines = lines
        self._max_empty = max_empty_messages
        self._max_wait = max_wait
        self._clock = clock
        self.finished = False
        self.timed_out = False

    def iter_deltas(self) -> Iterator[str]:
        """逐帧产出非空的增量文本。

        Raises:
            StreamDecodeError: 连续空消息过多，或某帧不是合法 JSON。
        """

        begin = self._clock()
        empty_count = 0
        for raw in self._lines:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8", errors="replace")
            line = raw.strip()

            if not line.startswith(DATA_PREFIX):
                empty_count += 1
                if empty_count > self._max_empty:
                    raise StreamDecodeError(
                        code="TOO_MANY_EMPTY_MESSAGES",
                        message="stream has sent too many empty messages",
                    )
            else:
                empty_count = 0
                body = line[len(DATA_PREFIX):]
                if body == DONE_SENTINEL:
                    self.finished = True
                    return
                try:
                    payload = json.loads(body)
                except json.JSONDecodeError as e:
                    raise StreamDecodeError(code="MALFORMED_FRAME", message=f"invalid stream frame: {e}")
                delta = extract_delta(payload)
                if delta:
                    yield delta

            if self._clock() - begin >= self._max_wait:
                self.timed_out = True
                return

    def consume(self, mailbox: Mailbox, log_ctx: Optional[Dict[str, Any]] = None) -> str:
        """读完整个流并把拼接结果投递到 mailbox。

        解析出错时已收到的部分文本照常投递；一个字都没有时关闭 mailbox，
        让 waiter 走失败分支。投递是非阻塞的，mailbox 已满或已关闭时丢弃。
        """

        ctx = dict(log_ctx or {})
        parts = []
        try:
            for delta in self.iter_deltas():
                if not parts:
                    log_event(logging.INFO, "stream first response", ctx)
                parts.append(delta)
        except StreamDecodeError as e:
            log_event(logging.ERROR, "stream decode failed", ctx, code=e.code, error=e.message)
        except (httpx.HTTPError, httpx.StreamError) as e:
            log_event(logging.ERROR, "stream read failed", ctx, error=str(e))

        if self.finished:
            log_event(logging.INFO, "stream finished", ctx)
        elif self.timed_out:
            log_event(logging.ERROR, "stream read timeout", ctx, max_wait=self._max_wait)

        text = "".join(parts)
        if not text:
            mailbox.close()
            return ""
        if mailbox.offer(text):
            log_event(logging.INFO, "push stream into mailbox", ctx, length=len(text))
        else:
            log_event(logging.ERROR, "push stream into mailbox failed", ctx)
        return text
