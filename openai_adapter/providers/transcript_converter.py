"""Transcript → Chat Completions 线上格式的转换层。

纯函数，不做任何 I/O：

- build_messages: Transcript 条目 → ChatMessage 列表（保持时间顺序）。
- extract_tools: 第一个带工具定义的 Instructions → ToolSpec 列表。
- extract_response_format: 最近一个带响应格式要求的 Prompt → ResponseFormat。
- extract_options: 最近一个 Prompt 上的生成参数。

转换永不抛异常：结构化数据无法解析时退化为尽力而为的文本或空 schema。
"""

import base64
import json
from typing import Any, Dict, List, Optional

from openai_adapter.domain.models import (
    AudioPart,
    ChatMessage,
    ContentPart,
    FunctionCall,
    FunctionSpec,
    ImagePart,
    ResponseFormat,
    TextPart,
    ToolSpec,
    WireToolCall,
    loads_strict,
)
from openai_adapter.domain.transcript import (
    AudioSegment,
    GenerationOptions,
    ImageSegment,
    Instructions,
    Prompt,
    Response,
    Segment,
    StructureSegment,
    TextSegment,
    ToolCalls,
    ToolDefinition,
    ToolOutput,
    Transcript,
)
from openai_adapter.infrastructure.logging.logger import logger
from openai_adapter.providers.registry import ModelDescriptor


def build_messages(transcript: Transcript) -> List[ChatMessage]:
    """按顺序把 Transcript 条目转换为线上消息。

    - Instructions → system（无非空文本时不产出消息）
    - Prompt → user（含图片/音频时为多模态 content 列表）
    - Response → assistant
    - ToolCalls → content 为 None 的 assistant + tool_calls
    - ToolOutput → tool，tool_call_id 为原调用 id
    """

    messages: List[ChatMessage] = []
    for entry in transcript:
        if isinstance(entry, Instructions):
            content = _join_segments(entry.segments)
            if content:
                messages.append(ChatMessage.system(content))
        elif isinstance(entry, Prompt):
            messages.append(_prompt_message(entry))
        elif isinstance(entry, Response):
            messages.append(ChatMessage.assistant(_join_segments(entry.segments)))
        elif isinstance(entry, ToolCalls):
            calls = [_wire_tool_call(call) for call in entry.calls]
            if calls:
                messages.append(ChatMessage(role="assistant", content=None, tool_calls=calls))
        elif isinstance(entry, ToolOutput):
            messages.append(ChatMessage.tool(content=_join_segments(entry.segments), tool_call_id=entry.id))
        else:
            logger.warning("Skipping unknown transcript entry", extra={"extra": {"type": type(entry).__name__}})
    return messages


def extract_tools(transcript: Transcript) -> Optional[List[ToolSpec]]:
    for entry in transcript:
        if isinstance(entry, Instructions) and entry.tool_definitions:
            tools = [_tool_spec(d) for d in entry.tool_definitions if d.name]
            return tools or None
    return None


def extract_response_format(transcript: Transcript, model: ModelDescriptor) -> ResponseFormat:
    """从最近一个带格式要求的 Prompt 推导 response_format。

    有 schema 且模型支持 json_schema 时返回 json_schema，否则降级为 json；
    没有任何格式要求时返回 none。
    """

    for entry in reversed(list(transcript)):
        if not isinstance(entry, Prompt) or entry.response_format is None:
            continue
        directive = entry.response_format
        if isinstance(directive.schema, dict) and model.supports_json_schema:
            return ResponseFormat.json_schema(
                normalize_schema(directive.schema),
                name=_schema_name(directive.name),
            )
        return ResponseFormat.json()
    return ResponseFormat.none()


def extract_options(transcript: Transcript) -> Optional[GenerationOptions]:
    for entry in reversed(list(transcript)):
        if isinstance(entry, Prompt):
            return entry.options
    return None


def normalize_schema(schema: Any) -> Dict[str, Any]:
    """整理为 JSON-Schema 形状的 dict；无法识别时退化为空 object schema。"""

    if not isinstance(schema, dict):
        return {"type": "object", "properties": {}}
    normalized = dict(schema)
    normalized.setdefault("type", "object")
    if normalized["type"] == "object" and not isinstance(normalized.get("properties"), dict):
        normalized["properties"] = {}
    return normalized


# ---- 辅助函数 ----


def _join_segments(segments: List[Segment]) -> str:
    """拼接文本片段（单个空格分隔），结构化片段序列化为稳定的 JSON 文本。"""

    texts: List[str] = []
    for segment in segments:
        if isinstance(segment, TextSegment):
            text = segment.content
        elif isinstance(segment, StructureSegment):
            text = _structure_text(segment.content)
        else:
            continue
        if text:
            texts.append(text)
    return " ".join(texts)


def _structure_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return str(value)


def _prompt_message(prompt: Prompt) -> ChatMessage:
    if not any(isinstance(s, (ImageSegment, AudioSegment)) for s in prompt.segments):
        return ChatMessage.user(_join_segments(prompt.segments))

    parts: List[ContentPart] = []
    for segment in prompt.segments:
        if isinstance(segment, TextSegment):
            parts.append(TextPart(text=segment.content))
        elif isinstance(segment, StructureSegment):
            parts.append(TextPart(text=_structure_text(segment.content)))
        elif isinstance(segment, ImageSegment):
            encoded = base64.b64encode(segment.data).decode("ascii")
            parts.append(ImagePart(url=f"data:{segment.mime_type};base64,{encoded}", detail=segment.detail))
        elif isinstance(segment, AudioSegment):
            encoded = base64.b64encode(segment.data).decode("ascii")
            parts.append(AudioPart(data=encoded, format=segment.format))
    return ChatMessage.user(parts)


def _wire_tool_call(call) -> WireToolCall:
    return WireToolCall(
        id=call.id,
        function=FunctionCall(name=call.tool_name, arguments=encode_arguments(call.arguments)),
    )


def encode_arguments(arguments: Any) -> str:
    """结构化参数 → JSON 字符串。已是合法 JSON 文本的字符串原样保留。"""

    if arguments is None:
        return "{}"
    if isinstance(arguments, str):
        try:
            loads_strict(arguments)
            return arguments
        except ValueError:
            return json.dumps(arguments, ensure_ascii=False)
    try:
        return json.dumps(arguments, ensure_ascii=False, sort_keys=True, default=str, allow_nan=False)
    except (TypeError, ValueError):
        logger.warning("Tool call arguments not serializable, sending empty object")
        return "{}"


def _tool_spec(definition: ToolDefinition) -> ToolSpec:
    return ToolSpec(
        function=FunctionSpec(
            name=definition.name,
            description=definition.description,
            parameters=normalize_schema(definition.parameters),
        )
    )


def _schema_name(name: Optional[str]) -> str:
    # json_schema.name 只允许 a-z A-Z 0-9 _ -
    cleaned = "".join(ch if (ch.isascii() and ch.isalnum()) or ch in "_-" else "_" for ch in (name or ""))
    return cleaned[:64] or "response"
