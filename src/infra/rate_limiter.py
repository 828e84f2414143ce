# src/infra/rate_limiter.py
"""
Ограничение частоты запросов: фиксированное окно в Redis.
Счётчик общий для всех реплик API.
"""

from __future__ import annotations

from dataclasses import dataclass

from src.common.logger import log_warning
from src.infra.redis_client import RedisClient


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


class RateLimiter:
    """
    Фиксированное окно на клиента.

    Args:
        redis: Клиент Redis
        window_seconds: Длина окна
        max_requests: Сколько запросов разрешено в окне
    """

    def __init__(self, redis: RedisClient, window_seconds: int, max_requests: int) -> None:
        self._redis = redis
        self._window = window_seconds
        self._max = max_requests

    async def hit(self, client_key: str) -> RateLimitDecision:
        """Учитывает запрос клиента и решает, пропускать ли его."""
        count, ttl = await self._redis.incr_with_ttl(f"ratelimit:{client_key}", self._window)
        if count <= self._max:
            return RateLimitDecision(allowed=True)

        retry_after = max(1, ttl if ttl > 0 else self._window)
        await log_warning(
            "Превышен лимит запросов",
            logger_name="rate_limit",
            extra={"client": client_key, "count": count, "retry_after": retry_after},
        )
        return RateLimitDecision(allowed=False, retry_after=retry_after)


def client_key_from_headers(forwarded_for: str | None, peer_host: str | None) -> str:
    """Адрес клиента: первый адрес X-Forwarded-For либо адрес соединения."""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return peer_host or "unknown"
