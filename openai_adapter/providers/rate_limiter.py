"""客户端限流：一分钟滑动窗口内的请求数上限。

只是尽力而为的节流，服务端仍可能返回 429，需要走错误路径处理。
clock / sleep 可注入，测试中用假时钟即可，不需要真的等待。
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque

from openai_adapter.infrastructure.logging.logger import log_event

WINDOW_SECONDS = 60.0


@dataclass
class RateLimiter:
    """记录最近一分钟内的请求时间戳；达到上限时阻塞到最早的时间戳移出窗口。

    多个客户端可以共享同一个实例，时间戳队列由锁保护。
    """

    requests_per_minute: int
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep
    window: float = WINDOW_SECONDS
    _timestamps: Deque[float] = field(default_factory=deque, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def acquire(self) -> float:
        """获取一次请求许可，返回累计等待的秒数。"""

        if self.requests_per_minute <= 0:
            return 0.0
        waited = 0.0
        while True:
            with self._lock:
                now = self.clock()
                self._prune(now)
                if len(self._timestamps) < self.requests_per_minute:
                    self._timestamps.append(now)
                    return waited
                wait_time = self._timestamps[0] + self.window - now
            # 锁外等待，其他线程仍可查看窗口
            if wait_time > 0:
                log_event(
                    logging.INFO,
                    "Rate limiter waiting",
                    wait_seconds=round(wait_time, 3),
                    requests_per_minute=self.requests_per_minute,
                )
                self.sleep(wait_time)
                waited += wait_time

    def in_flight(self) -> int:
        """当前窗口内已记录的请求数。"""

        with self._lock:
            self._prune(self.clock())
            return len(self._timestamps)

    def reset(self) -> None:
        with self._lock:
            self._timestamps.clear()

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()
