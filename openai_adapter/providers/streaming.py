"""SSE 流式响应重建。

transport 只负责产出原始字节块；本模块负责：

1. 按 ``\\n`` 切分完整的行（跨块的半行留在缓冲区里，按字节切分，不会切坏 UTF-8）。
2. 把每行解析为 SSE 字段 ``field: value``；只处理 ``data``，``event`` / ``id`` /
   ``retry`` 解析后忽略，以 ``:`` 开头的是注释。没有冒号的行、以及直接以
   JSON 开头的行当作原始 data 行。
3. ``data: [DONE]`` 使状态从 OPEN 变为 COMPLETE，之后的任何输入都不再产出事件。
4. 其余 data 值解码为 ChatStreamChunk，失败抛出 StreamDecodeError，不做重新同步。
5. 文本增量立即产出 TextDelta；工具调用片段按 index 累积，
   在 finish_reason == "tool_calls" 或流结束时一次性产出 ToolCallsReady。

只处理第一个 choice（n=1 的场景），其余 choice 忽略。
"""

import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from openai_adapter.domain.exceptions import StreamDecodeError
from openai_adapter.domain.models import (
    ChatStreamChunk,
    ChatUsage,
    DeltaToolCall,
    FunctionCall,
    WireToolCall,
    loads_strict,
)
from openai_adapter.infrastructure.logging.logger import log_event

DONE_SENTINEL = "[DONE]"


class StreamState(str, enum.Enum):
    OPEN = "open"
    COMPLETE = "complete"


# ---- 对外事件 ----


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCallsReady:
    """一组完整的工具调用，arguments 保证是合法 JSON 文本。"""

    calls: List[WireToolCall]


StreamEvent = Union[TextDelta, ToolCallsReady]


@dataclass
class StreamStatistics:
    chunk_count: int = 0
    character_count: int = 0
    tool_call_count: int = 0
    finish_reason: Optional[str] = None
    usage: Optional[ChatUsage] = None

    @property
    def estimated_tokens(self) -> int:
        # 粗略估算：约 4 个字符 1 个 token
        return self.character_count // 4


# ---- SSE 行解析 ----


def parse_sse_line(line: str) -> Optional[Tuple[str, str]]:
    """解析一行 SSE，返回 (field, value)；空行和注释返回 None。"""

    if not line or line.startswith(":"):
        return None
    if ":" not in line or line[0] in "{[":
        # 部分兼容服务直接逐行输出 JSON，不带 data: 前缀
        return "data", line
    name, _, value = line.partition(":")
    if value.startswith(" "):
        value = value[1:]
    return name, value


class LineBuffer:
    """字节缓冲区：只返回以换行结束的完整行，CRLF 与 LF 都接受。"""

    def __init__(self):
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> List[str]:
        self._buffer.extend(chunk)
        lines: List[str] = []
        while True:
            idx = self._buffer.find(b"\n")
            if idx < 0:
                break
            raw = bytes(self._buffer[:idx])
            del self._buffer[: idx + 1]
            lines.append(_decode_line(raw))
        return lines

    def flush(self) -> List[str]:
        """流结束时取出最后一段没有换行的内容。"""

        if not self._buffer:
            return []
        raw = bytes(self._buffer)
        self._buffer.clear()
        return [_decode_line(raw)]


def _decode_line(raw: bytes) -> str:
    return raw.rstrip(b"\r").decode("utf-8", errors="replace")


# ---- 工具调用累积 ----


@dataclass
class ToolCallAccumulator:
    """同一个 index 的工具调用片段。

    id / name 取首次出现的非空值；arguments 片段严格按到达顺序拼接。
    """

    index: int
    id: str = ""
    name: str = ""
    fragments: List[str] = field(default_factory=list)

    def add(self, delta: DeltaToolCall) -> None:
        if delta.id and not self.id:
            self.id = delta.id
        if delta.function is None:
            return
        if delta.function.name and not self.name:
            self.name = delta.function.name
        if delta.function.arguments:
            self.fragments.append(delta.function.arguments)

    @property
    def arguments(self) -> str:
        return "".join(self.fragments)

    def finalize(self) -> WireToolCall:
        if not self.name:
            raise StreamDecodeError(f"Tool call at index {self.index} has no function name")
        arguments = self.arguments.strip() or "{}"
        try:
            loads_strict(arguments)
        except ValueError as e:
            raise StreamDecodeError(
                f"Tool call '{self.name}' produced invalid JSON arguments: {e}",
                raw=arguments,
            ) from e
        return WireToolCall(
            id=self.id or f"call_{self.index}",
            function=FunctionCall(name=self.name, arguments=arguments),
        )


# ---- 状态机 ----


class StreamReconstructor:
    """单个流的重建状态机，非线程安全，每个流一个实例。"""

    def __init__(self, model: Optional[str] = None):
        self.model = model
        self.state = StreamState.OPEN
        self.statistics = StreamStatistics()
        self._lines = LineBuffer()
        self._text_parts: List[str] = []
        self._pending: Dict[int, ToolCallAccumulator] = {}
        self._ended = False

    @property
    def is_complete(self) -> bool:
        return self.state is StreamState.COMPLETE

    @property
    def accumulated_text(self) -> str:
        return "".join(self._text_parts)

    @property
    def pending_tool_calls(self) -> Dict[int, ToolCallAccumulator]:
        return dict(self._pending)

    def feed(self, chunk: bytes) -> List[StreamEvent]:
        """喂入一段原始字节，返回由此产生的事件（可能为空）。"""

        if self.is_complete or self._ended:
            return []
        events: List[StreamEvent] = []
        for line in self._lines.feed(chunk):
            events.extend(self.process_line(line))
            if self.is_complete:
                break
        return events

    def finish(self) -> List[StreamEvent]:
        """底层字节流结束（EOF）。

        没有收到 [DONE] 时尽力处理缓冲区剩余内容，并结束尚未完成的工具调用；
        状态保持 OPEN，调用方可据此判断流是否被提前截断。
        """

        if self.is_complete or self._ended:
            return []
        events: List[StreamEvent] = []
        for line in self._lines.flush():
            events.extend(self.process_line(line))
        if not self.is_complete:
            events.extend(self._flush_tool_calls())
            log_event(
                logging.WARNING,
                "Stream ended without [DONE]",
                model=self.model,
                chunks=self.statistics.chunk_count,
            )
        self._ended = True
        return events

    def process_line(self, line: str) -> List[StreamEvent]:
        if self.is_complete:
            return []
        parsed = parse_sse_line(line)
        if parsed is None:
            return []
        name, value = parsed
        if name != "data":
            # event / id / retry 以及未知字段
            return []
        if value.strip() == DONE_SENTINEL:
            return self._complete()
        return self._process_data(value)

    # ---- 内部 ----

    def _complete(self) -> List[StreamEvent]:
        events = self._flush_tool_calls()
        self.state = StreamState.COMPLETE
        log_event(
            logging.INFO,
            "Stream completed",
            model=self.model,
            chunks=self.statistics.chunk_count,
            characters=self.statistics.character_count,
            tool_calls=self.statistics.tool_call_count,
            estimated_tokens=self.statistics.estimated_tokens,
        )
        return events

    def _process_data(self, value: str) -> List[StreamEvent]:
        if not value.strip():
            return []
        try:
            chunk = ChatStreamChunk.from_payload(json.loads(value))
        except (ValueError, TypeError, AttributeError) as e:
            raise StreamDecodeError(f"Failed to decode stream chunk: {e}", raw=value) from e

        self.statistics.chunk_count += 1
        if chunk.usage is not None:
            self.statistics.usage = chunk.usage
        if not chunk.choices:
            return []

        events: List[StreamEvent] = []
        choice = chunk.choices[0]
        text = choice.delta.content
        if text:
            self._text_parts.append(text)
            self.statistics.character_count += len(text)
            events.append(TextDelta(text=text))
        for delta in choice.delta.tool_calls or []:
            acc = self._pending.get(delta.index)
            if acc is None:
                acc = self._pending[delta.index] = ToolCallAccumulator(index=delta.index)
            acc.add(delta)
        if choice.finish_reason:
            self.statistics.finish_reason = choice.finish_reason
            if choice.finish_reason == "tool_calls":
                events.extend(self._flush_tool_calls())
        return events

    def _flush_tool_calls(self) -> List[StreamEvent]:
        if not self._pending:
            return []
        calls = [self._pending[i].finalize() for i in sorted(self._pending)]
        self._pending.clear()
        self.statistics.tool_call_count += len(calls)
        return [ToolCallsReady(calls=calls)]


def reconstruct(
    chunks: Iterable[bytes],
    reconstructor: Optional[StreamReconstructor] = None,
) -> Iterator[StreamEvent]:
    """把字节块序列转换为事件序列。

    收到 [DONE] 后立即停止读取；无论正常结束还是调用方提前放弃迭代，
    都会关闭底层的字节迭代器（从而关闭 HTTP 连接）。
    """

    rec = reconstructor or StreamReconstructor()
    try:
        for chunk in chunks:
            yield from rec.feed(chunk)
            if rec.is_complete:
                return
        yield from rec.finish()
    finally:
        close = getattr(chunks, "close", None)
        if close is not None:
            close()
