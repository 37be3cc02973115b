"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护模型描述与家族推断 (registry)。
- Transcript 转换、请求构建、HTTP 传输、流式重建、错误映射。
- 客户端限流与可选的重试包装。
"""

from typing import Optional, Union

from openai_adapter.config.settings import settings
from openai_adapter.providers.base import ProviderClient
from openai_adapter.providers.openai_client import OpenAIChatClient
from openai_adapter.providers.rate_limiter import RateLimiter
from openai_adapter.providers.registry import ModelDescriptor, ModelFamily, resolve_model
from openai_adapter.providers.retry import RetryPolicy


def create_client(
    model: Union[str, ModelDescriptor, None] = None,
    cfg=None,
    family: Optional[ModelFamily] = None,
    rate_limiter: Optional[RateLimiter] = None,
    retry: bool = False,
) -> ProviderClient:
    """根据模型 ID 创建客户端，默认取配置中的 default_model。

    启用限流时若未传入共享的 RateLimiter，则按配置新建一个。
    """

    cfg = cfg or settings
    if not isinstance(model, ModelDescriptor):
        model = resolve_model(model or getattr(cfg, "default_model", "gpt-4o"), family=family)
    if rate_limiter is None and getattr(cfg, "enable_rate_limit", True):
        rate_limiter = RateLimiter(requests_per_minute=getattr(cfg, "requests_per_minute", 3_500))
    return OpenAIChatClient(
        model,
        cfg,
        rate_limiter=rate_limiter,
        retry_policy=RetryPolicy.from_settings(cfg) if retry else None,
    )


__all__ = ["OpenAIChatClient", "ProviderClient", "RateLimiter", "RetryPolicy", "create_client"]
