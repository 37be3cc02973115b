"""按模型家族构建 ChatRequest。

两种策略共享同一个入口 build_request，通过以家族为键的分发表选择：

- standard: 透传 temperature / top_p / 惩罚项 / stop（越界时截断到合法区间），
  输出长度字段为 max_tokens。
- constrained: 无论调用方传了什么，都去掉全部采样参数，
  输出长度字段改名为 max_completion_tokens；工具定义仍然附带。

两者都会把输出长度限制在模型的 max_output_tokens 以内，并在返回前
完成一次编码校验，编码失败抛出 RequestBuildError。
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from openai_adapter.domain.exceptions import RequestBuildError
from openai_adapter.domain.models import ChatMessage, ChatRequest, ResponseFormat, ToolChoice, ToolSpec
from openai_adapter.domain.transcript import GenerationOptions
from openai_adapter.providers.registry import ModelDescriptor, ModelFamily

Range = Tuple[float, float]


@dataclass(frozen=True)
class ParameterConstraints:
    """某个家族接受的请求参数。"""

    supports_sampling: bool
    max_tokens_field: str
    temperature_range: Optional[Range] = None
    top_p_range: Optional[Range] = None
    penalty_range: Optional[Range] = None


STANDARD_CONSTRAINTS = ParameterConstraints(
    supports_sampling=True,
    max_tokens_field="max_tokens",
    temperature_range=(0.0, 2.0),
    top_p_range=(0.0, 1.0),
    penalty_range=(-2.0, 2.0),
)

CONSTRAINED_CONSTRAINTS = ParameterConstraints(
    supports_sampling=False,
    max_tokens_field="max_completion_tokens",
)

CONSTRAINTS: Mapping[ModelFamily, ParameterConstraints] = {
    ModelFamily.STANDARD: STANDARD_CONSTRAINTS,
    ModelFamily.CONSTRAINED: CONSTRAINED_CONSTRAINTS,
}

_VALID_ROLES = ("system", "user", "assistant", "tool")


def build_request(
    model: ModelDescriptor,
    messages: List[ChatMessage],
    options: Optional[GenerationOptions] = None,
    tools: Optional[List[ToolSpec]] = None,
    response_format: Optional[ResponseFormat] = None,
    streaming: bool = False,
    tool_choice: Optional[ToolChoice] = None,
) -> ChatRequest:
    """构建并校验一次 chat/completions 请求。相同输入总是得到相同的请求体。"""

    _validate_messages(messages)
    _validate_tools(tools)
    policy = _POLICIES[model.family]
    request = policy(model, messages, options or GenerationOptions(), streaming)
    if tools:
        request.tools = list(tools)
        request.tool_choice = tool_choice or "auto"
    if response_format is not None and response_format.kind != "none":
        request.response_format = response_format
    request.encode()
    return request


def _standard_request(
    model: ModelDescriptor,
    messages: List[ChatMessage],
    options: GenerationOptions,
    streaming: bool,
) -> ChatRequest:
    c = STANDARD_CONSTRAINTS
    return ChatRequest(
        model=model.api_name,
        messages=list(messages),
        temperature=_clamp(options.temperature, c.temperature_range),
        top_p=_clamp(options.top_p, c.top_p_range),
        max_tokens=_cap_output_tokens(options.max_output_tokens, model),
        stop=list(options.stop_sequences) if options.stop_sequences else None,
        stream=streaming,
        frequency_penalty=_clamp(options.frequency_penalty, c.penalty_range),
        presence_penalty=_clamp(options.presence_penalty, c.penalty_range),
    )


def _constrained_request(
    model: ModelDescriptor,
    messages: List[ChatMessage],
    options: GenerationOptions,
    streaming: bool,
) -> ChatRequest:
    # 推理模型拒绝所有采样参数，这里直接不设置
    return ChatRequest(
        model=model.api_name,
        messages=list(messages),
        max_completion_tokens=_cap_output_tokens(options.max_output_tokens, model),
        stream=streaming,
    )


_POLICIES: Dict[ModelFamily, Callable[..., ChatRequest]] = {
    ModelFamily.STANDARD: _standard_request,
    ModelFamily.CONSTRAINED: _constrained_request,
}


def _clamp(value: Optional[float], bounds: Optional[Range]) -> Optional[float]:
    if value is None or bounds is None:
        return value
    low, high = bounds
    return max(low, min(high, float(value)))


def _cap_output_tokens(value: Optional[int], model: ModelDescriptor) -> Optional[int]:
    if value is None:
        return None
    if value < 1:
        raise RequestBuildError(f"max output tokens must be positive, got {value}", model=model.identifier)
    return min(int(value), model.max_output_tokens)


def _validate_messages(messages: List[ChatMessage]) -> None:
    if not messages:
        raise RequestBuildError("messages must not be empty")
    for i, message in enumerate(messages):
        if message.role not in _VALID_ROLES:
            raise RequestBuildError(f"message {i} has invalid role {message.role!r}")
        if message.role == "tool" and not message.tool_call_id:
            raise RequestBuildError(f"tool message {i} is missing tool_call_id")
        if message.tool_calls and message.content is not None:
            raise RequestBuildError(f"message {i} carries both content and tool_calls")


def _validate_tools(tools: Optional[List[ToolSpec]]) -> None:
    for tool in tools or []:
        if not tool.function.name:
            raise RequestBuildError("tool definition name must be non-empty")
        if not isinstance(tool.function.parameters, dict):
            raise RequestBuildError(f"tool {tool.function.name!r} parameters must be an object")
