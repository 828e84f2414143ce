# src/infra/redis_client.py
"""
Клиент Redis для кэширования и счётчиков rate limit.
Поддерживает типизированные операции с Pydantic моделями.
"""

from __future__ import annotations

from typing import Type, TypeVar

import redis.asyncio as redis
from pydantic import BaseModel

from src.common.logger import get_logger, log_error, log_info

logger = get_logger("redis")

T = TypeVar("T", bound=BaseModel)


class RedisClient:
    """
    Асинхронный клиент Redis (Singleton).
    Все ключи автоматически получают префикс namespace.
    """

    _instance: RedisClient | None = None
    _client: redis.Redis | None = None

    def __new__(cls) -> RedisClient:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._client = None
        self._namespace = "ridepool"

    @property
    def client(self) -> redis.Redis:
        """Возвращает клиент Redis."""
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    def _make_key(self, key: str) -> str:
        """Добавляет namespace к ключу."""
        return f"{self._namespace}:{key}"

    async def connect(
        self,
        url: str,
        max_connections: int = 50,
        namespace: str | None = None,
    ) -> None:
        """
        Подключается к Redis и проверяет соединение PING.

        Args:
            url: URL Redis
            max_connections: Максимальное количество соединений
            namespace: Префикс ключей
        """
        if self._client is not None:
            return

        if namespace:
            self._namespace = namespace

        await log_info("Подключение к Redis...", logger_name="redis")
        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        await self._client.ping()
        await log_info("Подключение к Redis установлено", logger_name="redis")

    async def disconnect(self) -> None:
        """Закрывает соединение с Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто", logger_name="redis")

    # =========================================================================
    # БАЗОВЫЕ ОПЕРАЦИИ
    # =========================================================================

    async def get(self, key: str) -> str | None:
        return await self.client.get(self._make_key(key))

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        """Устанавливает значение с необязательным TTL в секундах."""
        return await self.client.set(self._make_key(key), value, ex=ttl)

    # =========================================================================
    # СЧЁТЧИКИ
    # =========================================================================

    async def incr_with_ttl(self, key: str, ttl: int) -> tuple[int, int]:
        """
        Атомарно увеличивает счётчик окна и выставляет TTL при создании.

        Args:
            key: Ключ счётчика
            ttl: Длина окна в секундах

        Returns:
            (значение счётчика, оставшийся TTL в секундах)
        """
        full_key = self._make_key(key)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(full_key)
            pipe.expire(full_key, ttl, nx=True)
            pipe.ttl(full_key)
            count, _, remaining = await pipe.execute()
        return int(count), int(remaining)

    # =========================================================================
    # ТИПИЗИРОВАННЫЕ ОПЕРАЦИИ (PYDANTIC)
    # =========================================================================

    async def get_model(self, key: str, model_class: Type[T]) -> T | None:
        """
        Получает и десериализует Pydantic модель.

        Returns:
            Экземпляр модели или None (нет ключа или битые данные)
        """
        data = await self.get(key)
        if data is None:
            return None

        try:
            return model_class.model_validate_json(data)
        except ValueError as e:
            await log_error(f"Ошибка десериализации модели {model_class.__name__}: {e}", logger_name="redis")
            return None

    async def set_model(self, key: str, model: BaseModel, ttl: int | None = None) -> bool:
        """Сериализует и сохраняет Pydantic модель."""
        return await self.set(key, model.model_dump_json(), ttl=ttl)

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    async def health_check(self) -> bool:
        """Проверяет подключение командой PING."""
        try:
            return await self.client.ping()
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}", logger_name="redis")
            return False


def get_redis() -> RedisClient:
    """Возвращает глобальный экземпляр RedisClient."""
    return RedisClient()


async def init_redis() -> RedisClient:
    """Подключается к Redis по настройкам."""
    from src.config import settings

    redis_client = get_redis()
    await redis_client.connect(
        url=settings.redis.url,
        max_connections=settings.redis.REDIS_MAX_CONNECTIONS,
        namespace=settings.redis.REDIS_NAMESPACE,
    )
    await log_info(
        f"Redis подключён: {settings.redis.REDIS_HOST}:{settings.redis.REDIS_PORT}/{settings.redis.REDIS_DB}",
        logger_name="redis",
    )
    return redis_client


async def close_redis() -> None:
    """Закрывает подключение к Redis."""
    await get_redis().disconnect()
