"""OpenAI 兼容 Provider 客户端。

把各层串起来：

    Transcript → transcript_converter → request_builder → http_client
        → 非流式: response_handler
        → 流式:   streaming.reconstruct，逐条产出

对调用方暴露的是 Transcript 条目：文本回答为 Response，工具调用为 ToolCalls
（arguments 已解析回结构化值）。所有错误都经过 map_error 细化后抛出。
"""

import logging
import time
from contextlib import closing
from typing import Any, Callable, Dict, Iterator, Optional

from openai_adapter.config.settings import settings
from openai_adapter.domain.exceptions import BusinessError, ResponseDecodeError
from openai_adapter.domain.models import ChatRequest, WireToolCall, loads_strict
from openai_adapter.domain.transcript import (
    GenerationOptions,
    Response,
    TextSegment,
    ToolCall,
    ToolCalls,
    Transcript,
    TranscriptEntry,
)
from openai_adapter.infrastructure.logging.logger import log_event
from openai_adapter.providers.http_client import OpenAIHTTPClient
from openai_adapter.providers.rate_limiter import RateLimiter
from openai_adapter.providers.registry import Capability, ModelDescriptor
from openai_adapter.providers.request_builder import build_request
from openai_adapter.providers.response_handler import extract_content, extract_tool_calls, map_error
from openai_adapter.providers.retry import RetryPolicy, with_retry
from openai_adapter.providers.streaming import StreamReconstructor, TextDelta, ToolCallsReady, reconstruct
from openai_adapter.providers.transcript_converter import (
    build_messages,
    extract_options,
    extract_response_format,
    extract_tools,
)

CHARS_PER_TOKEN = 4
DEFAULT_RESERVE_TOKENS = 1000


class OpenAIChatClient:
    """OpenAI 兼容服务的客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - chat: 非流式调用，返回 Response 或 ToolCalls。
    - chat_stream: 流式调用，逐个产出 Response / ToolCalls 条目。

    默认不自动重试；传入 retry_policy 时只对非流式调用生效
    （流式输出一旦开始就无法透明地重放）。
    """

    name = "openai"

    def __init__(
        self,
        model: ModelDescriptor,
        cfg=settings,
        http: Optional[OpenAIHTTPClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.model = model
        self._settings = cfg
        self._http = http or OpenAIHTTPClient(cfg)
        self._rate_limiter = rate_limiter
        self._retry_policy = retry_policy
        self._sleep = sleep or time.sleep

    # ---- 对外接口 ----

    def prepare_request(
        self,
        transcript: Transcript,
        options: Optional[GenerationOptions] = None,
        streaming: bool = False,
    ) -> ChatRequest:
        """Transcript → 校验过的 ChatRequest，不发起网络请求。"""

        return build_request(
            self.model,
            build_messages(transcript),
            options=options or extract_options(transcript),
            tools=extract_tools(transcript),
            response_format=extract_response_format(transcript, self.model),
            streaming=streaming,
        )

    def chat(self, transcript: Transcript, options: Optional[GenerationOptions] = None) -> TranscriptEntry:
        request = self.prepare_request(transcript, options)

        def attempt() -> TranscriptEntry:
            self._acquire()
            try:
                result = self._http.send(request)
                text = extract_content(result)
                calls = extract_tool_calls(result)
            except BusinessError as e:
                self._raise_mapped(e)
            if calls:
                return ToolCalls(calls=[self._transcript_call(c) for c in calls])
            return Response(segments=[TextSegment(content=text)])

        if self._retry_policy is None:
            return attempt()
        return with_retry(attempt, self._retry_policy, sleep=self._sleep)

    def chat_stream(
        self, transcript: Transcript, options: Optional[GenerationOptions] = None
    ) -> Iterator[TranscriptEntry]:
        """流式调用。文本增量逐条产出为 Response，工具调用完整后产出 ToolCalls。"""

        request = self.prepare_request(transcript, options, streaming=True)
        self._acquire()
        reconstructor = StreamReconstructor(model=self.model.identifier)
        events = reconstruct(self._http.open_stream(request), reconstructor)
        try:
            # 调用方提前停止迭代时同样关闭底层连接
            with closing(events):
                for event in events:
                    if isinstance(event, TextDelta):
                        yield Response(segments=[TextSegment(content=event.text)])
                    elif isinstance(event, ToolCallsReady):
                        yield ToolCalls(calls=[self._transcript_call(c) for c in event.calls])
        except BusinessError as e:
            self._raise_mapped(e)

    # ---- 上下文估算 ----

    def estimate_token_count(self, text: str) -> int:
        """粗略估算 token 数（约 4 个字符 1 个 token），至少为 1。"""

        return max(1, len(text) // CHARS_PER_TOKEN)

    def would_exceed_context(self, text: str) -> bool:
        return self.estimate_token_count(text) > self.model.context_window_tokens

    def truncate_to_context(self, text: str, reserve_tokens: int = DEFAULT_RESERVE_TOKENS) -> str:
        """按估算截断到上下文窗口内，尽量在单词边界处截断。"""

        max_chars = max(0, self.model.context_window_tokens - reserve_tokens) * CHARS_PER_TOKEN
        if len(text) <= max_chars:
            return text
        truncated = text[:max_chars]
        last_space = truncated.rfind(" ")
        if last_space >= 0:
            return truncated[:last_space]
        return truncated

    def model_info(self) -> Dict[str, Any]:
        return {
            "provider": self.name,
            "model": self.model.identifier,
            "family": self.model.family.value,
            "context_window": self.model.context_window_tokens,
            "max_output_tokens": self.model.max_output_tokens,
            "capabilities": sorted(c.value for c in self.model.capabilities),
            "pricing_tier": self.model.pricing_tier.value,
        }

    def supports(self, capability: Capability) -> bool:
        return capability in self.model.capabilities

    # ---- 辅助方法 ----

    def _acquire(self) -> None:
        if self._rate_limiter is not None:
            self._rate_limiter.acquire()

    def _raise_mapped(self, error: BusinessError) -> None:
        mapped = map_error(error, self.model)
        if mapped is error:
            raise error
        log_event(logging.INFO, "Mapped provider error", model=self.model.identifier, code=getattr(mapped, "code", None))
        raise mapped from error

    @staticmethod
    def _transcript_call(call: WireToolCall) -> ToolCall:
        return ToolCall(
            id=call.id,
            tool_name=call.function.name,
            arguments=parse_arguments(call.function.arguments),
        )


def parse_arguments(arguments: str) -> Any:
    """工具调用参数 JSON 文本 → 结构化值。空串视为 {}。"""

    if not arguments or not arguments.strip():
        return {}
    try:
        return loads_strict(arguments)
    except ValueError as e:
        raise ResponseDecodeError(f"Tool call arguments are not valid JSON: {e}", raw_body=arguments) from e
