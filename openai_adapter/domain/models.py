"""Chat Completions 线上协议（wire）数据模型。

本模块只描述厂商 JSON 的形状，不包含业务行为：

- ChatMessage / 内容片段（text、image_url、input_audio）。
- ToolSpec: 发给模型的函数工具定义。
- WireToolCall: 消息中的工具调用（arguments 为 JSON 字符串）。
- ChatRequest: POST /chat/completions 的请求体。
- ChatResult: 非流式响应。
- ChatStreamChunk: 流式响应中的一个增量。

字段名严格使用厂商的 snake_case，这是兼容性要求而不是风格选择。
每个模型提供 to_payload()/from_payload() 在 dict 与 dataclass 之间转换。
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

from openai_adapter.domain.exceptions import RequestBuildError


Role = Literal["system", "user", "assistant", "tool"]


def _drop_none(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def loads_strict(text: str) -> Any:
    """json.loads，但拒绝 NaN / Infinity / -Infinity 这类非标准常量。"""

    return json.loads(text, parse_constant=_reject_constant)


# ---- 内容片段（多模态） ----


@dataclass
class TextPart:
    text: str

    def to_payload(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ImagePart:
    url: str
    detail: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {"type": "image_url", "image_url": _drop_none({"url": self.url, "detail": self.detail})}


@dataclass
class AudioPart:
    data: str  # base64
    format: str = "mp3"

    def to_payload(self) -> Dict[str, Any]:
        return {"type": "input_audio", "input_audio": {"data": self.data, "format": self.format}}


ContentPart = Union[TextPart, ImagePart, AudioPart]


def content_part_from_payload(payload: Dict[str, Any]) -> Optional[ContentPart]:
    kind = payload.get("type") or "text"
    if kind == "text":
        return TextPart(text=str(payload.get("text") or ""))
    if kind == "image_url":
        image = payload.get("image_url") or {}
        return ImagePart(url=str(image.get("url") or ""), detail=image.get("detail"))
    if kind == "input_audio":
        audio = payload.get("input_audio") or {}
        return AudioPart(data=str(audio.get("data") or ""), format=audio.get("format") or "mp3")
    return None


# ---- 工具 ----


@dataclass
class FunctionCall:
    name: str
    arguments: str  # JSON 字符串


@dataclass
class WireToolCall:
    id: str
    function: FunctionCall
    type: str = "function"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.function.name, "arguments": self.function.arguments},
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], fallback_id: str = "") -> "WireToolCall":
        func = payload.get("function") or {}
        if not isinstance(func, dict):
            raise TypeError("tool call function must be a JSON object")
        arguments = func.get("arguments")
        if arguments is None:
            arguments = ""
        elif not isinstance(arguments, str):
            # 个别兼容厂商直接返回对象
            arguments = json.dumps(arguments, ensure_ascii=False, allow_nan=False)
        return cls(
            id=payload.get("id") or fallback_id,
            type=payload.get("type") or "function",
            function=FunctionCall(name=func.get("name") or payload.get("name") or "", arguments=arguments),
        )


@dataclass
class FunctionSpec:
    name: str
    parameters: Dict[str, Any]
    description: Optional[str] = None


@dataclass
class ToolSpec:
    """发给模型的一个 function 工具。"""

    function: FunctionSpec
    type: str = "function"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "function": _drop_none(
                {
                    "name": self.function.name,
                    "description": self.function.description,
                    "parameters": self.function.parameters,
                }
            ),
        }


ToolChoice = Union[Literal["auto", "none", "required"], str]


def encode_tool_choice(choice: Optional[ToolChoice]) -> Any:
    """auto/none/required 原样输出，其余字符串视为强制调用的函数名。"""

    if choice is None or choice in ("auto", "none", "required"):
        return choice
    return {"type": "function", "function": {"name": choice}}


# ---- 消息 ----


@dataclass
class ChatMessage:
    """一条线上消息。

    - 带 tool_calls 的 assistant 消息 content 为 None。
    - role 为 "tool" 的消息必须带 tool_call_id。
    """

    role: Role
    content: Optional[Union[str, List[ContentPart]]] = None
    name: Optional[str] = None
    tool_calls: Optional[List[WireToolCall]] = None
    tool_call_id: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: Union[str, List[ContentPart]]) -> "ChatMessage":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role="assistant", content=content)

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> "ChatMessage":
        return cls(role="tool", content=content, tool_call_id=tool_call_id)

    @property
    def text(self) -> Optional[str]:
        """纯文本内容；多模态时拼接所有 text 片段。"""

        if self.content is None or isinstance(self.content, str):
            return self.content
        return " ".join(p.text for p in self.content if isinstance(p, TextPart))

    def to_payload(self) -> Dict[str, Any]:
        if isinstance(self.content, list):
            content: Any = [part.to_payload() for part in self.content]
        else:
            content = self.content
        payload: Dict[str, Any] = {"role": self.role, "content": content}
        if self.name is not None:
            payload["name"] = self.name
        if self.tool_calls is not None:
            payload["tool_calls"] = [call.to_payload() for call in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChatMessage":
        raw_content = payload.get("content")
        content: Optional[Union[str, List[ContentPart]]]
        if isinstance(raw_content, list):
            parts = [content_part_from_payload(p) for p in raw_content if isinstance(p, dict)]
            content = [p for p in parts if p is not None]
        elif raw_content is None:
            content = None
        else:
            content = str(raw_content)
        tool_calls_raw = payload.get("tool_calls")
        tool_calls = None
        if isinstance(tool_calls_raw, list):
            tool_calls = [
                WireToolCall.from_payload(call, fallback_id=f"tool_call_{idx}")
                for idx, call in enumerate(tool_calls_raw)
                if isinstance(call, dict)
            ]
        return cls(
            role=payload.get("role") or "assistant",
            content=content,
            name=payload.get("name"),
            tool_calls=tool_calls,
            tool_call_id=payload.get("tool_call_id"),
        )


# ---- 响应格式 ----


@dataclass
class ResponseFormat:
    """response_format 指令：none / json / json_schema。"""

    kind: Literal["none", "json", "json_schema"] = "none"
    schema: Optional[Dict[str, Any]] = None
    name: str = "response"

    @classmethod
    def none(cls) -> "ResponseFormat":
        return cls(kind="none")

    @classmethod
    def json(cls) -> "ResponseFormat":
        return cls(kind="json")

    @classmethod
    def json_schema(cls, schema: Dict[str, Any], name: str = "response") -> "ResponseFormat":
        return cls(kind="json_schema", schema=schema, name=name)

    def to_payload(self) -> Optional[Dict[str, Any]]:
        if self.kind == "json":
            return {"type": "json_object"}
        if self.kind == "json_schema":
            return {"type": "json_schema", "json_schema": {"name": self.name, "schema": self.schema or {}}}
        return None


# ---- 请求 ----


@dataclass
class ChatRequest:
    """POST /chat/completions 的请求体。

    max_tokens 与 max_completion_tokens 二选一，由 request_builder 按模型家族决定。
    """

    model: str
    messages: List[ChatMessage]
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    max_completion_tokens: Optional[int] = None
    stop: Optional[List[str]] = None
    stream: bool = False
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    tools: Optional[List[ToolSpec]] = None
    tool_choice: Optional[ToolChoice] = None
    response_format: Optional[ResponseFormat] = None
    user: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_payload() for m in self.messages],
            "temperature": self.temperature,
            "top_p": self.top_p,
            "max_tokens": self.max_tokens,
            "max_completion_tokens": self.max_completion_tokens,
            "stop": self.stop,
            "stream": self.stream,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
            "tools": [t.to_payload() for t in self.tools] if self.tools else None,
            "tool_choice": encode_tool_choice(self.tool_choice) if self.tools else None,
            "response_format": self.response_format.to_payload() if self.response_format else None,
            "user": self.user,
        }
        return _drop_none(payload)

    def encode(self) -> bytes:
        """序列化为 UTF-8 JSON 请求体；相同输入总是得到相同字节。"""

        try:
            return json.dumps(self.to_payload(), ensure_ascii=False, allow_nan=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise RequestBuildError(f"Request body is not JSON encodable: {e}", model=self.model) from e


# ---- 非流式响应 ----


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息。"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    reasoning_tokens: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChatUsage":
        details = payload.get("completion_tokens_details")
        if not isinstance(details, dict):
            details = {}
        reasoning = payload.get("reasoning_tokens", details.get("reasoning_tokens"))
        return cls(
            prompt_tokens=payload.get("prompt_tokens") or 0,
            completion_tokens=payload.get("completion_tokens") or 0,
            total_tokens=payload.get("total_tokens") or 0,
            reasoning_tokens=reasoning,
        )


@dataclass
class ChatChoice:
    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次非流式调用的响应。raw 保存原始 JSON，便于调试。"""

    id: str
    model: str
    choices: List[ChatChoice]
    object: str = "chat.completion"
    created: int = 0
    usage: Optional[ChatUsage] = None
    system_fingerprint: Optional[str] = None
    raw: Optional[dict] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ChatResult":
        if not isinstance(data, dict):
            raise TypeError(f"expected JSON object, got {type(data).__name__}")
        choices: List[ChatChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            if not isinstance(ch, dict):
                continue
            message = ch.get("message") or {}
            if not isinstance(message, dict):
                raise TypeError("choice message must be a JSON object")
            choices.append(
                ChatChoice(
                    index=ch.get("index", i),
                    message=ChatMessage.from_payload(message),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage")
        return cls(
            id=data.get("id") or "",
            object=data.get("object") or "chat.completion",
            created=data.get("created") or 0,
            model=data.get("model") or "",
            choices=choices,
            usage=ChatUsage.from_payload(usage_raw) if isinstance(usage_raw, dict) else None,
            system_fingerprint=data.get("system_fingerprint"),
            raw=data,
        )


# ---- 流式响应 ----


@dataclass
class DeltaFunction:
    name: Optional[str] = None
    arguments: Optional[str] = None


@dataclass
class DeltaToolCall:
    """工具调用片段：index 在整个回合内稳定，id/name 通常只出现在首个片段。"""

    index: int
    id: Optional[str] = None
    type: Optional[str] = None
    function: Optional[DeltaFunction] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], position: int) -> "DeltaToolCall":
        func = payload.get("function")
        function = None
        if isinstance(func, dict):
            arguments = func.get("arguments")
            if arguments is not None and not isinstance(arguments, str):
                arguments = json.dumps(arguments, ensure_ascii=False)
            function = DeltaFunction(name=func.get("name"), arguments=arguments)
        index = payload.get("index")
        return cls(
            index=index if isinstance(index, int) else position,
            id=payload.get("id"),
            type=payload.get("type"),
            function=function,
        )


@dataclass
class ChatDelta:
    role: Optional[str] = None
    content: Optional[str] = None
    tool_calls: Optional[List[DeltaToolCall]] = None


@dataclass
class ChatStreamChoice:
    index: int
    delta: ChatDelta
    finish_reason: Optional[str] = None


@dataclass
class ChatStreamChunk:
    """流式响应中的一个增量 chunk。"""

    id: str
    model: str
    choices: List[ChatStreamChoice]
    object: str = "chat.completion.chunk"
    created: int = 0
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = field(default=None, repr=False)

    @classmethod
    def from_payload(cls, data: Any) -> "ChatStreamChunk":
        if not isinstance(data, dict):
            raise TypeError(f"expected JSON object, got {type(data).__name__}")
        choices: List[ChatStreamChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            if not isinstance(ch, dict):
                raise TypeError("choice must be a JSON object")
            delta_raw = ch.get("delta") or {}
            if not isinstance(delta_raw, dict):
                raise TypeError("choice delta must be a JSON object")
            tool_calls_raw = delta_raw.get("tool_calls")
            tool_calls = None
            if isinstance(tool_calls_raw, list):
                tool_calls = [
                    DeltaToolCall.from_payload(tc, pos)
                    for pos, tc in enumerate(tool_calls_raw)
                    if isinstance(tc, dict)
                ]
            content = delta_raw.get("content")
            choices.append(
                ChatStreamChoice(
                    index=ch.get("index", i),
                    delta=ChatDelta(
                        role=delta_raw.get("role"),
                        content=content if content is None else str(content),
                        tool_calls=tool_calls,
                    ),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage")
        return cls(
            id=data.get("id") or "",
            object=data.get("object") or "chat.completion.chunk",
            created=data.get("created") or 0,
            model=data.get("model") or "",
            choices=choices,
            usage=ChatUsage.from_payload(usage_raw) if isinstance(usage_raw, dict) else None,
            raw=data,
        )
