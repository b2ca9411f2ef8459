"""
aeq_ai/api_throttler.py
-----------------------------------
Điều tiết + retry cho lệnh gọi judge qua OpenAI Chat Completions.

- Khoảng cách tối thiểu giữa 2 lần gọi (theo model hoặc toàn cục)
- Retry với backoff lũy thừa + jitter, tôn trọng Retry-After khi bị 429
- Timeout và lỗi 5xx được retry; lỗi 4xx khác ném ngay
- Hết lượt -> ThrottlerError (giữ lỗi cuối + số lần thử)
"""

import time
import random
import logging
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from openai import OpenAI
from openai import RateLimitError, APIError, APITimeoutError

logger = logging.getLogger(__name__)


class ThrottlerError(Exception):
    """Hết lượt retry mà judge vẫn chưa trả lời được."""

    def __init__(self, message: str, last_exception: Optional[BaseException], attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


class ApiThrottler:
    def __init__(
        self,
        min_interval: float = 0.0,
        max_retries: int = 3,
        max_wait: float = 20.0,
        per_model: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Tham số:
            min_interval: giây tối thiểu giữa hai lần gọi cùng khóa
            max_retries: tổng số lần thử (kể cả lần đầu)
            max_wait: trần thời gian chờ giữa các lần retry
            per_model: khóa theo model (True) hay một khóa chung (False)
            sleep: hàm ngủ, tests truyền vào hàm giả để không phải chờ
        """
        self.min_interval = max(0.0, min_interval)
        self.max_retries = max(1, max_retries)
        self.max_wait = max_wait
        self.per_model = per_model
        self._sleep = sleep

        self._lock = Lock()
        self._last_call: Dict[str, float] = {}

    @classmethod
    def from_settings(cls, settings: Any) -> "ApiThrottler":
        return cls(
            min_interval=settings.judge_min_interval_s,
            max_retries=settings.judge_max_retries,
            max_wait=max(1.0, settings.judge_timeout_s),
        )

    def _key(self, model: str) -> str:
        return model if self.per_model else "__global__"

    def _wait_for_slot(self, key: str) -> None:
        if self.min_interval <= 0:
            return
        with self._lock:
            now = time.monotonic()
            wait = self.min_interval - (now - self._last_call.get(key, 0.0))
            # Đặt chỗ trước khi ngủ để luồng khác xếp hàng phía sau
            self._last_call[key] = now + max(0.0, wait)
        if wait > 0:
            logger.debug(f"⏳ Chờ {wait:.2f}s trước khi gọi judge ({key})")
            self._sleep(wait)

    def _backoff(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(self.max_wait, max(0.0, retry_after))
        return min(self.max_wait, 2 ** attempt + random.uniform(0.5, 2.0))

    @staticmethod
    def _retry_after(exc: Exception) -> Optional[float]:
        response = getattr(exc, "response", None)
        headers = getattr(response, "headers", None)
        if not headers:
            return None
        val = headers.get("Retry-After")
        try:
            return float(val) if val else None
        except (TypeError, ValueError):
            return None

    def safe_openai_chat(
        self,
        client: OpenAI,
        messages: List[Dict[str, Any]],
        model: str = "gpt-4o-mini",
        **kwargs,
    ):
        """Gọi chat.completions.create có retry. Thành công trả response, thất bại ném ThrottlerError."""
        key = self._key(model)
        last_exc: Optional[BaseException] = None

        for attempt in range(1, self.max_retries + 1):
            self._wait_for_slot(key)
            try:
                return client.chat.completions.create(model=model, messages=messages, **kwargs)

            except RateLimitError as e:
                wait_time = self._backoff(attempt, self._retry_after(e))
                logger.warning(f"⚠️ Judge bị rate limit (429). Chờ {wait_time:.1f}s ({attempt}/{self.max_retries})")
                last_exc = e

            except APITimeoutError as e:
                wait_time = self._backoff(attempt, None)
                logger.warning(f"⏱️ Judge timeout. Chờ {wait_time:.1f}s ({attempt}/{self.max_retries})")
                last_exc = e

            except APIError as e:
                status = getattr(e, "status_code", None)
                if not (status and 500 <= status < 600):
                    logger.error(f"🚫 Lỗi judge không thể retry ({status}): {e}")
                    raise
                wait_time = self._backoff(attempt, None)
                logger.warning(f"💥 Judge lỗi máy chủ ({status}). Chờ {wait_time:.1f}s ({attempt}/{self.max_retries})")
                last_exc = e

            if attempt < self.max_retries:
                self._sleep(wait_time)

        raise ThrottlerError("❌ Hết lượt retry, judge không phản hồi.", last_exc, self.max_retries)
