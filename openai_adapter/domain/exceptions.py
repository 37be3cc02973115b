"""统一业务异常模型。

所有跨模块抛出的错误都继承自 BusinessError，便于调用方统一捕获，
并通过 ``code`` / ``retryable`` 判断处理策略：

- 构建期：RequestBuildError（输入无法编码，不可重试）。
- 传输层：TransportError（DNS/TLS/超时/连接失败，可重试）。
- HTTP 状态：AuthenticationFailed(401)、RateLimitExceeded(429)、StatusError。
- 厂商错误：ApiError，再由 response_handler.map_error 细化为领域错误。
- 流式解码：StreamDecodeError（对当前流是致命的）。
- 响应形态：EmptyResponse、NoContent。
"""

from typing import Any, Dict, Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "TRANSPORT_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 model、provider 等）。
    """

    retryable = False

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败（例如缺少 API Key）。"""


class RequestBuildError(BusinessError):
    """请求体无法构建或编码。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="REQUEST_BUILD_ERROR", message=message, **extra)


class TransportError(BusinessError):
    """网络层错误，例如 DNS 失败、TLS 握手失败、连接超时等。

    ``cause`` 保存底层 httpx 异常，同时通过 ``raise ... from`` 链接。
    """

    retryable = True

    def __init__(self, message: str, cause: Optional[BaseException] = None, **extra):
        super().__init__(code="TRANSPORT_ERROR", message=message, http_status=503, **extra)
        self.cause = cause


class AuthenticationFailed(BusinessError):
    """401：API Key 无效或缺失。"""

    def __init__(self, message: str = "Authentication failed. Check your API key.", **extra):
        super().__init__(code="AUTHENTICATION_FAILED", message=message, http_status=401, **extra)


class RateLimitExceeded(BusinessError):
    """限流错误（HTTP 429 或厂商 rate_limit_exceeded），由调用方决定是否退避重试。"""

    retryable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later",
        retry_after: Optional[float] = None,
        **extra,
    ):
        super().__init__(code="RATE_LIMIT", message=message, http_status=429, **extra)
        self.retry_after = retry_after


class StatusError(BusinessError):
    """HTTP 状态码 >= 400 且响应体不是可识别的厂商错误信封。"""

    def __init__(self, status: int, raw_body: str = "", **extra):
        super().__init__(
            code="STATUS_ERROR",
            message=f"HTTP error with status code: {status}",
            http_status=status,
            **extra,
        )
        self.status = status
        self.raw_body = raw_body


class ApiError(BusinessError):
    """厂商返回的错误信封 ``{"error": {message, type, param, code}}``。"""

    def __init__(
        self,
        message: str,
        type: Optional[str] = None,
        param: Optional[str] = None,
        code: Optional[str] = None,
        http_status: int = 400,
        payload: Optional[Dict[str, Any]] = None,
        **extra,
    ):
        super().__init__(code="API_ERROR", message=message, http_status=http_status, **extra)
        self.type = type
        self.param = param
        self.error_code = code
        self.payload = payload or {}

    @classmethod
    def from_envelope(cls, envelope: Dict[str, Any], http_status: int = 400) -> "ApiError":
        body = envelope.get("error") or {}
        return cls(
            message=str(body.get("message") or ""),
            type=body.get("type"),
            param=body.get("param"),
            code=body.get("code"),
            http_status=http_status,
            payload=envelope,
        )


class StreamDecodeError(BusinessError):
    """SSE data 行无法解码为增量 chunk，当前流终止，不做重新同步。"""

    def __init__(self, message: str, raw: str = "", **extra):
        super().__init__(code="STREAM_DECODE_ERROR", message=message, http_status=502, **extra)
        self.raw = raw


class ResponseDecodeError(BusinessError):
    """非流式响应体不是合法的 chat completion JSON。"""

    def __init__(self, message: str, raw_body: str = "", **extra):
        super().__init__(code="RESPONSE_DECODE_ERROR", message=message, http_status=502, **extra)
        self.raw_body = raw_body


class EmptyResponse(BusinessError):
    """响应中没有任何 choice。"""

    def __init__(self, message: str = "Received empty response from OpenAI", **extra):
        super().__init__(code="EMPTY_RESPONSE", message=message, http_status=502, **extra)


class NoContent(BusinessError):
    """首个 choice 既没有文本也没有工具调用。"""

    def __init__(self, message: str = "Response contains no content", **extra):
        super().__init__(code="NO_CONTENT", message=message, http_status=502, **extra)


# ---- 领域错误：由 response_handler.map_error 产生 ----


class ModelNotAvailable(BusinessError):
    def __init__(self, model: str, **extra):
        super().__init__(
            code="MODEL_NOT_AVAILABLE",
            message=f"Model '{model}' is not available or you don't have access to it",
            http_status=404,
            **extra,
        )
        self.model = model


class ContextLengthExceeded(BusinessError):
    def __init__(self, model: str, limit: int, **extra):
        super().__init__(
            code="CONTEXT_LENGTH_EXCEEDED",
            message=f"Context length exceeded for model '{model}'. Maximum: {limit} tokens",
            **extra,
        )
        self.model = model
        self.limit = limit


class QuotaExceeded(BusinessError):
    def __init__(self, message: str = "API quota exceeded. Please check your billing", **extra):
        super().__init__(code="QUOTA_EXCEEDED", message=message, http_status=429, **extra)


class ParameterNotSupported(BusinessError):
    def __init__(self, parameter: str, model: str, **extra):
        super().__init__(
            code="PARAMETER_NOT_SUPPORTED",
            message=f"Parameter '{parameter}' is not supported by model '{model}'",
            **extra,
        )
        self.parameter = parameter
        self.model = model


class InvalidRequest(BusinessError):
    def __init__(self, message: str, **extra):
        super().__init__(code="INVALID_REQUEST", message=f"Invalid request: {message}", **extra)


class ReasoningFailed(BusinessError):
    """仅对 constrained 家族（推理模型）有意义。"""

    def __init__(self, message: str, **extra):
        super().__init__(code="REASONING_FAILED", message=f"Reasoning failed: {message}", **extra)


class ContextTooComplex(BusinessError):
    """仅对 constrained 家族（推理模型）有意义。"""

    def __init__(self, model: str, **extra):
        super().__init__(
            code="CONTEXT_TOO_COMPLEX",
            message=f"Context too complex for model {model}",
            **extra,
        )
        self.model = model
