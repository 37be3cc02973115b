"""宿主侧的对话记录（Transcript）模型。

Transcript 由宿主框架拥有，本包只读取、从不修改。它是一个按时间顺序排列的
条目列表，每个条目是以下五种之一：

- Instructions: 系统指令，可附带工具定义列表。
- Prompt: 用户输入，可附带响应格式要求与生成参数。
- Response: 模型的文本回答。
- ToolCalls: 模型发起的一组工具调用。
- ToolOutput: 某个工具调用的执行结果。

每个条目携带有序的 Segment 序列（文本或结构化值；Prompt 额外支持图片/音频）。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union


@dataclass
class TextSegment:
    content: str


@dataclass
class StructureSegment:
    """结构化内容，content 为可 JSON 序列化的值（dict/list/str/数字...）。"""

    content: Any


@dataclass
class ImageSegment:
    data: bytes
    mime_type: str = "image/jpeg"
    detail: str = "auto"


@dataclass
class AudioSegment:
    data: bytes
    format: str = "mp3"


Segment = Union[TextSegment, StructureSegment, ImageSegment, AudioSegment]


@dataclass
class ToolDefinition:
    """宿主暴露给模型的工具。

    parameters 应为 JSON-Schema 形状的 dict；宿主无法提供时可以为 None，
    转换层会退化为空的 object schema。
    """

    name: str
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None


@dataclass
class ResponseFormatDirective:
    """Prompt 上的结构化输出要求。

    - schema: 完整 JSON Schema（可用时走 json_schema 模式）。
    - name: 输出类型名称，仅用于 json_schema 的 name 字段。
    """

    name: Optional[str] = None
    schema: Optional[Dict[str, Any]] = None


@dataclass
class GenerationOptions:
    """宿主传入的生成参数，全部可选。"""

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_output_tokens: Optional[int] = None
    stop_sequences: Optional[List[str]] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None


@dataclass
class Instructions:
    segments: List[Segment] = field(default_factory=list)
    tool_definitions: List[ToolDefinition] = field(default_factory=list)


@dataclass
class Prompt:
    segments: List[Segment] = field(default_factory=list)
    response_format: Optional[ResponseFormatDirective] = None
    options: Optional[GenerationOptions] = None


@dataclass
class Response:
    segments: List[Segment] = field(default_factory=list)


@dataclass
class ToolCall:
    """Transcript 中的一次工具调用，arguments 为结构化值（通常是 dict）。"""

    id: str
    tool_name: str
    arguments: Any = field(default_factory=dict)


@dataclass
class ToolCalls:
    calls: List[ToolCall] = field(default_factory=list)


@dataclass
class ToolOutput:
    id: str  # 对应 ToolCall.id
    tool_name: str
    segments: List[Segment] = field(default_factory=list)


TranscriptEntry = Union[Instructions, Prompt, Response, ToolCalls, ToolOutput]
Transcript = Sequence[TranscriptEntry]
