"""可选的重试包装：只对限流和临时网络错误做有上限的指数退避。

构建错误、鉴权错误、模型/参数错误等一律直接抛出，不重试。
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from openai_adapter.domain.exceptions import RateLimitExceeded, TransportError
from openai_adapter.infrastructure.logging.logger import log_event

T = TypeVar("T")

RETRYABLE_ERRORS = (RateLimitExceeded, TransportError)


@dataclass(frozen=True)
class RetryPolicy:
    """重试策略。max_attempts 包含首次调用。"""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 32.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.0  # 例如 0.2 表示 ±20% 随机浮动

    @classmethod
    def exponential_backoff(cls) -> "RetryPolicy":
        return cls()

    @classmethod
    def none(cls) -> "RetryPolicy":
        return cls(max_attempts=1, initial_delay=0.0, max_delay=0.0)

    @classmethod
    def from_settings(cls, cfg: Any) -> "RetryPolicy":
        return cls(
            max_attempts=getattr(cfg, "retry_max_attempts", 3),
            initial_delay=getattr(cfg, "retry_initial_delay", 1.0),
            max_delay=getattr(cfg, "retry_max_delay", 32.0),
            backoff_multiplier=getattr(cfg, "retry_backoff_multiplier", 2.0),
        )

    def delay_for(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """第 attempt 次失败（从 1 开始）之后的等待时间。"""

        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            return min(float(retry_after), self.max_delay)
        delay = min(self.initial_delay * (self.backoff_multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter_factor:
            delay += delay * self.jitter_factor * (2 * random.random() - 1)
        return max(0.0, delay)


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, RETRYABLE_ERRORS)


def with_retry(
    fn: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """调用 fn，遇到可重试错误时按策略退避重试，最后一次失败原样抛出。"""

    policy = policy or RetryPolicy.exponential_backoff()
    attempts = max(1, policy.max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            result = fn()
        except RETRYABLE_ERRORS as e:
            if attempt >= attempts:
                log_event(logging.ERROR, "All retry attempts failed", attempts=attempts, code=e.code)
                raise
            delay = policy.delay_for(attempt, e)
            log_event(
                logging.WARNING,
                "Retrying after error",
                attempt=attempt,
                max_attempts=attempts,
                code=e.code,
                delay=round(delay, 3),
            )
            sleep(delay)
            continue
        if attempt > 1:
            log_event(logging.INFO, "Retry succeeded", attempt=attempt)
        return result
    raise AssertionError("unreachable")
