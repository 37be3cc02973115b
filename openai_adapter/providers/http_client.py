"""OpenAI 兼容接口的 HTTP 传输层。

负责：

1. 统一附加 Authorization / Content-Type / OpenAI-Organization 请求头和超时。
2. send: 非流式调用，返回解码后的 ChatResult。
3. open_stream: 流式调用，逐块返回原始字节，交给 streaming 模块切分 SSE 记录。
4. 把非 2xx 状态与网络异常映射为类型化的错误（见 domain.exceptions）。

流式调用一旦以 2xx 开始，就不再检查状态码；调用方提前停止迭代时，
生成器关闭会退出 httpx 的上下文管理器并释放连接。
"""

import json
import logging
import time
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterator, Mapping, Optional

import httpx

from openai_adapter.config.settings import DEFAULT_BASE_URL, clamp_timeout, settings
from openai_adapter.domain.exceptions import (
    ApiError,
    AuthenticationFailed,
    RateLimitExceeded,
    ResponseDecodeError,
    StatusError,
    TransportError,
    ValidationError,
)
from openai_adapter.domain.models import ChatRequest, ChatResult
from openai_adapter.infrastructure.logging.logger import log_event

CHAT_COMPLETIONS = "chat/completions"


class OpenAIHTTPClient:
    """基于 httpx 的同步客户端，每次调用独立建立 Client，调用之间不共享状态。"""

    def __init__(self, cfg=settings):
        # cfg 需提供 openai_api_key、openai_base_url、http_timeout 等属性
        self._settings = cfg

    # ---- 非流式 ----

    def send(self, request: ChatRequest) -> ChatResult:
        headers = self._headers()
        body = request.encode()
        url = self._url(CHAT_COMPLETIONS)
        log_event(logging.INFO, "Dispatching chat completion", model=request.model, stream=False)
        try:
            with httpx.Client(timeout=self._timeout(), trust_env=False) as client:
                resp = client.post(url, content=body, headers=headers)
        except httpx.RequestError as e:
            raise TransportError(_describe(e), cause=e, model=request.model) from e
        if resp.status_code >= 400:
            raise_for_error_response(resp.status_code, resp.headers, resp.text, model=request.model)
        try:
            return ChatResult.from_payload(resp.json())
        except (ValueError, TypeError, AttributeError) as e:
            raise ResponseDecodeError(f"Failed to decode response: {e}", raw_body=resp.text) from e

    # ---- 流式 ----

    def open_stream(self, request: ChatRequest) -> Iterator[bytes]:
        """发起流式请求，逐块产出原始字节。

        只有在第一次迭代时才真正发起连接；初始状态码 >= 400 时读完响应体
        并按非流式相同的规则抛错。
        """

        headers = self._headers()
        body = request.encode()
        url = self._url(CHAT_COMPLETIONS)
        headers["Accept"] = "text/event-stream"
        log_event(logging.INFO, "Dispatching chat completion", model=request.model, stream=True)
        try:
            with httpx.Client(timeout=self._timeout(), trust_env=False) as client:
                with client.stream("POST", url, content=body, headers=headers) as resp:
                    if resp.status_code >= 400:
                        raw = resp.read().decode("utf-8", errors="replace")
                        raise_for_error_response(resp.status_code, resp.headers, raw, model=request.model)
                    for chunk in resp.iter_bytes():
                        if chunk:
                            yield chunk
        except httpx.RequestError as e:
            raise TransportError(_describe(e), cause=e, model=request.model) from e

    # ---- 辅助方法 ----

    def _headers(self) -> Dict[str, str]:
        api_key = getattr(self._settings, "openai_api_key", None)
        if not api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set")
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        organization = getattr(self._settings, "openai_organization", None)
        if organization:
            headers["OpenAI-Organization"] = organization
        return headers

    def _url(self, endpoint: str) -> str:
        base = getattr(self._settings, "openai_base_url", None) or DEFAULT_BASE_URL
        return f"{base.rstrip('/')}/{endpoint}"

    def _timeout(self) -> float:
        return clamp_timeout(float(getattr(self._settings, "http_timeout", 120.0)))


def raise_for_error_response(
    status: int,
    headers: Mapping[str, str],
    body: str,
    model: Optional[str] = None,
) -> None:
    """把 >= 400 的响应转换为类型化错误并抛出。

    - 401 → AuthenticationFailed
    - 429 → RateLimitExceeded（带 Retry-After）；若信封的 code 是别的
      （例如 insufficient_quota），按 ApiError 抛出交给错误映射细化
    - 其他：可解码的错误信封 → ApiError，否则 StatusError
    """

    envelope = parse_error_envelope(body)
    log_event(
        logging.WARNING,
        "HTTP error response",
        status=status,
        model=model,
        error_code=(envelope or {}).get("error", {}).get("code"),
    )
    if status == 401:
        message = (envelope or {}).get("error", {}).get("message") or "Authentication failed. Check your API key."
        raise AuthenticationFailed(message=message)
    if status == 429:
        vendor_code = (envelope or {}).get("error", {}).get("code")
        if envelope is not None and vendor_code not in (None, "rate_limit_exceeded"):
            raise ApiError.from_envelope(envelope, http_status=status)
        message = (envelope or {}).get("error", {}).get("message") or "Rate limit exceeded. Please try again later"
        raise RateLimitExceeded(message=message, retry_after=parse_retry_after(headers))
    if envelope is not None:
        raise ApiError.from_envelope(envelope, http_status=status)
    raise StatusError(status, raw_body=body)


def parse_error_envelope(body: str) -> Optional[Dict[str, Any]]:
    """解析 {"error": {...}}，不是合法信封时返回 None。"""

    if not body:
        return None
    try:
        data = json.loads(body)
    except (ValueError, TypeError):
        return None
    if not isinstance(data, dict) or not isinstance(data.get("error"), dict):
        return None
    if "message" not in data["error"]:
        return None
    return data


def parse_retry_after(headers: Mapping[str, str]) -> Optional[float]:
    """Retry-After 支持秒数与 HTTP 日期两种格式。"""

    value = None
    if headers is not None:
        value = headers.get("Retry-After") or headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, when.timestamp() - time.time())


def _describe(error: httpx.RequestError) -> str:
    if isinstance(error, httpx.TimeoutException):
        return f"Request timed out: {error}" if str(error) else "Request timed out"
    return str(error) or type(error).__name__
