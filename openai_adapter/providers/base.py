"""Provider 抽象接口。

上层只依赖此协议，而不直接依赖具体的 HTTP 实现：

- chat(transcript): 非流式调用，返回一个 Transcript 条目（Response 或 ToolCalls）。
- chat_stream(transcript): 流式调用，逐个产出 Transcript 条目。

这样可以在不改调用方代码的前提下接入更多 OpenAI 兼容服务（DeepSeek 等）。
"""

from typing import Iterable, Optional, Protocol

from openai_adapter.domain.transcript import GenerationOptions, Transcript, TranscriptEntry
from openai_adapter.providers.registry import ModelDescriptor


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    - name: Provider 名称，用于日志/统计。
    - model: 当前绑定的模型描述。
    """

    name: str
    model: ModelDescriptor

    def chat(self, transcript: Transcript, options: Optional[GenerationOptions] = None) -> TranscriptEntry:
        ...

    def chat_stream(
        self, transcript: Transcript, options: Optional[GenerationOptions] = None
    ) -> Iterable[TranscriptEntry]:
        """流式调用，逐步产出条目。"""

        ...
