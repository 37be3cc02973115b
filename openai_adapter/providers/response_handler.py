"""非流式响应的提取与厂商错误映射。"""

from typing import Callable, Dict, List, Mapping, Optional

from openai_adapter.domain.exceptions import (
    ApiError,
    BusinessError,
    ContextLengthExceeded,
    ContextTooComplex,
    EmptyResponse,
    InvalidRequest,
    ModelNotAvailable,
    NoContent,
    ParameterNotSupported,
    QuotaExceeded,
    RateLimitExceeded,
    ReasoningFailed,
)
from openai_adapter.domain.models import ChatResult, WireToolCall
from openai_adapter.providers.registry import ModelDescriptor, ModelFamily
from openai_adapter.providers.request_builder import CONSTRAINTS

Mapper = Callable[[ApiError, ModelDescriptor], BusinessError]

SAMPLING_PARAMETERS = ("temperature", "top_p", "frequency_penalty", "presence_penalty", "stop")


def extract_content(result: ChatResult) -> str:
    """取第一个 choice 的文本。

    只有工具调用没有文本时返回空字符串；两者都没有时抛 NoContent。
    """

    if not result.choices:
        raise EmptyResponse()
    message = result.choices[0].message
    text = message.text
    if text:
        return text
    if message.tool_calls:
        return ""
    raise NoContent()


def extract_tool_calls(result: ChatResult) -> Optional[List[WireToolCall]]:
    if not result.choices:
        return None
    return result.choices[0].message.tool_calls or None


def map_error(error: BaseException, model: ModelDescriptor) -> BaseException:
    """把传输层/厂商错误细化为领域错误。

    查找顺序：家族专属 → 通用 → 原样返回。键是厂商 code，code 为空时才用 type。
    非 ApiError 的错误（TransportError、StatusError 等）已经是最终类型，原样返回。
    """

    if not isinstance(error, ApiError):
        return error
    # 只有 code 缺失时才按 type 查找
    key = error.error_code or error.type
    if not key:
        return error
    handler = _FAMILY_MAPPERS.get(model.family, {}).get(key) or _COMMON_MAPPERS.get(key)
    if handler is None:
        return error
    return handler(error, model)


# ---- 各错误码的处理函数 ----


def _model_not_found(error: ApiError, model: ModelDescriptor) -> BusinessError:
    return ModelNotAvailable(model.identifier)


def _context_length_exceeded(error: ApiError, model: ModelDescriptor) -> BusinessError:
    return ContextLengthExceeded(model.identifier, model.context_window_tokens)


def _rate_limit_exceeded(error: ApiError, model: ModelDescriptor) -> BusinessError:
    if error.message:
        return RateLimitExceeded(message=error.message)
    return RateLimitExceeded()


def _insufficient_quota(error: ApiError, model: ModelDescriptor) -> BusinessError:
    return QuotaExceeded()


def _invalid_request(error: ApiError, model: ModelDescriptor) -> BusinessError:
    # 推理模型拒绝采样参数时，厂商返回的是通用 invalid_request_error
    if not CONSTRAINTS[model.family].supports_sampling:
        parameter = _mentioned_parameter(error)
        if parameter:
            return ParameterNotSupported(parameter, model.identifier)
    return InvalidRequest(error.message)


def _reasoning_failed(error: ApiError, model: ModelDescriptor) -> BusinessError:
    return ReasoningFailed(error.message)


def _context_too_complex(error: ApiError, model: ModelDescriptor) -> BusinessError:
    return ContextTooComplex(model.identifier)


def _mentioned_parameter(error: ApiError) -> Optional[str]:
    if error.param in SAMPLING_PARAMETERS:
        return error.param
    message = (error.message or "").lower()
    for name in SAMPLING_PARAMETERS:
        if name in message:
            return name
    return None


_COMMON_MAPPERS: Dict[str, Mapper] = {
    "model_not_found": _model_not_found,
    "context_length_exceeded": _context_length_exceeded,
    "rate_limit_exceeded": _rate_limit_exceeded,
    "insufficient_quota": _insufficient_quota,
    "invalid_request_error": _invalid_request,
}

_FAMILY_MAPPERS: Mapping[ModelFamily, Dict[str, Mapper]] = {
    ModelFamily.STANDARD: {},
    ModelFamily.CONSTRAINED: {
        "reasoning_failed": _reasoning_failed,
        "context_too_complex": _context_too_complex,
    },
}
