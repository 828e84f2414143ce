# src/core/pricing/repository.py
"""
Репозиторий фиксированных цен маршрутов с кэшем в Redis.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from src.common.logger import log_debug
from src.infra.database import DatabaseManager
from src.infra.redis_client import RedisClient


class CachedRoutePrice(BaseModel):
    """Запись кэша; price_per_seat=None значит, что фиксированной цены нет."""
    price_per_seat: Optional[float] = None


def normalize_city(value: str) -> str:
    """Нормализует название города: обрезка пробелов и нижний регистр."""
    return value.strip().lower()


class FixedRoutePriceRepository:
    """Активные фиксированные цены за место для пар городов."""

    def __init__(self, db: DatabaseManager, redis: RedisClient, cache_ttl: int = 300) -> None:
        self._db = db
        self._redis = redis
        self._cache_ttl = cache_ttl

    async def get_active_price(self, from_city: str, to_city: str) -> float | None:
        """
        Возвращает активную фиксированную цену за место или None.

        Args:
            from_city: Город отправления (в любом регистре)
            to_city: Город прибытия (в любом регистре)
        """
        from_key = normalize_city(from_city)
        to_key = normalize_city(to_city)
        cache_key = f"fixed_route:{from_key}:{to_key}"

        cached = await self._redis.get_model(cache_key, CachedRoutePrice)
        if cached is not None:
            return cached.price_per_seat

        price = await self._db.fetchval(
            """
            SELECT price_per_seat
            FROM fixed_route_prices
            WHERE LOWER(TRIM(from_city)) = $1
              AND LOWER(TRIM(to_city)) = $2
              AND is_active = true
            LIMIT 1
            """,
            from_key,
            to_key,
        )

        value = float(price) if price is not None else None
        await self._redis.set_model(cache_key, CachedRoutePrice(price_per_seat=value), ttl=self._cache_ttl)
        await log_debug(
            "Фиксированная цена маршрута загружена из БД",
            logger_name="pricing",
            extra={"from_city": from_key, "to_city": to_key, "price": value},
        )
        return value
