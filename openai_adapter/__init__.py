"""OpenAI 兼容 Provider 适配器顶层包。

把宿主的对话记录（Transcript）转换为 Chat Completions 请求，
以非流式或 SSE 流式方式调用远端接口，并把结果还原为 Transcript 条目。
"""

from openai_adapter.providers import OpenAIChatClient, create_client

__all__ = ["OpenAIChatClient", "create_client"]
