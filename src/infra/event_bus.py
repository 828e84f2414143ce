# src/infra/event_bus.py
"""
Шина событий на базе RabbitMQ.
Маркетплейс только публикует события (уведомления участникам);
потребители живут в отдельных сервисах.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import aio_pika
from aio_pika import ExchangeType, Message
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractRobustConnection

from src.common.logger import get_logger, log_debug, log_error, log_info

logger = get_logger("event_bus")


# =============================================================================
# ДОМЕННЫЕ СОБЫТИЯ
# =============================================================================

@dataclass
class DomainEvent:
    """Событие, публикуемое в exchange."""
    event_type: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )

    def to_json(self) -> str:
        """Сериализует событие в JSON."""
        return json.dumps({
            "event_id": self.event_id,
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "payload": self.payload,
        }, ensure_ascii=False, default=str)


class EventTypes:
    """Константы типов событий (routing keys)."""
    NOTIFICATION_SEND = "notification.send"
    RIDE_REQUEST_CREATED = "ride_request.created"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_REFUNDED = "payment.refunded"


class EventBus:
    """
    Публикатор событий в topic exchange RabbitMQ (Singleton).
    Ошибки публикации логируются и не пробрасываются.
    """

    _instance: EventBus | None = None

    def __new__(cls) -> EventBus:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._exchange_name = "ridepool.events"

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed

    async def connect(self, url: str, exchange_name: str | None = None) -> None:
        """
        Подключается к RabbitMQ и объявляет exchange.

        Args:
            url: AMQP URL
            exchange_name: Имя topic exchange
        """
        if self.is_connected:
            return

        if exchange_name:
            self._exchange_name = exchange_name

        await log_info("Подключение к RabbitMQ...", logger_name="event_bus")
        self._connection = await aio_pika.connect_robust(url)
        self._channel = await self._connection.channel()
        self._exchange = await self._channel.declare_exchange(
            self._exchange_name,
            ExchangeType.TOPIC,
            durable=True,
        )
        await log_info("Подключение к RabbitMQ установлено", logger_name="event_bus")

    async def disconnect(self) -> None:
        """Закрывает соединение с RabbitMQ."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchange = None
            await log_info("Соединение с RabbitMQ закрыто", logger_name="event_bus")

    async def publish(self, event: DomainEvent) -> bool:
        """
        Публикует событие, используя event_type как routing key.

        Returns:
            True если событие отправлено
        """
        if not self.is_connected or self._exchange is None:
            await log_error(
                "Не удалось опубликовать событие: нет соединения с RabbitMQ",
                logger_name="event_bus",
                extra={"event_type": event.event_type},
            )
            return False

        try:
            message = Message(
                body=event.to_json().encode(),
                content_type="application/json",
                message_id=event.event_id,
                timestamp=datetime.now(timezone.utc),
            )
            await self._exchange.publish(message, routing_key=event.event_type)
        except Exception as e:
            await log_error(
                f"Ошибка публикации события: {e}",
                logger_name="event_bus",
                extra={"event_type": event.event_type, "event_id": event.event_id},
            )
            return False

        await log_debug(f"Событие опубликовано: {event.event_type}", logger_name="event_bus")
        return True

    async def health_check(self) -> bool:
        return self.is_connected


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Возвращает глобальный экземпляр EventBus."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


async def init_event_bus() -> EventBus:
    """Подключается к RabbitMQ по настройкам."""
    from src.config import settings

    event_bus = get_event_bus()
    await event_bus.connect(
        url=settings.rabbitmq.url,
        exchange_name=settings.rabbitmq.RABBITMQ_EXCHANGE,
    )
    await log_info(
        f"RabbitMQ подключён: {settings.rabbitmq.RABBITMQ_HOST}:{settings.rabbitmq.RABBITMQ_PORT}",
        logger_name="event_bus",
    )
    return event_bus


async def close_event_bus() -> None:
    """Закрывает подключение к RabbitMQ."""
    await get_event_bus().disconnect()
