# src/core/notifications/service.py
"""
Сервис уведомлений.
Публикует события notification.send в шину; доставку (push, e-mail)
выполняет отдельный потребитель.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.common.logger import log_debug, log_error
from src.infra.event_bus import DomainEvent, EventBus, EventTypes


class NotificationKind:
    """Виды уведомлений (поле kind в payload)."""
    BOOKING_REQUESTED = "booking_requested"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_REJECTED = "booking_rejected"
    BOOKING_CANCELLED_BY_PASSENGER = "booking_cancelled_by_passenger"
    BOOKING_CANCELLED_BY_DRIVER = "booking_cancelled_by_driver"
    RIDE_STARTED = "ride_started"
    RIDE_COMPLETED = "ride_completed"
    RIDE_CANCELLED = "ride_cancelled"
    RIDE_REQUEST_CREATED = "ride_request_created"
    RIDE_REQUEST_ACCEPTED = "ride_request_accepted"
    OFFER_CREATED = "offer_created"
    OFFER_ACCEPTED = "offer_accepted"
    OFFER_REJECTED = "offer_rejected"
    OFFER_CANCELLED = "offer_cancelled"


@dataclass
class Notification:
    """Уведомление одному пользователю."""
    user_id: str
    kind: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)


class NotificationService:
    """
    Публикатор уведомлений.

    Отправка никогда не влияет на результат доменной операции:
    ошибки только логируются.
    """

    def __init__(self, event_bus: EventBus) -> None:
        self._event_bus = event_bus

    async def notify(self, notification: Notification) -> bool:
        """
        Ставит уведомление в очередь.

        Returns:
            True если событие опубликовано
        """
        try:
            published = await self._event_bus.publish(DomainEvent(
                event_type=EventTypes.NOTIFICATION_SEND,
                payload={
                    "user_id": notification.user_id,
                    "kind": notification.kind,
                    "title": notification.title,
                    "body": notification.body,
                    "data": notification.data,
                },
            ))
        except Exception as e:
            await log_error(
                f"Ошибка отправки уведомления: {e}",
                logger_name="notifications",
                extra={"user_id": notification.user_id, "kind": notification.kind},
            )
            return False

        await log_debug(
            f"Уведомление поставлено в очередь: user={notification.user_id}, kind={notification.kind}",
            logger_name="notifications",
        )
        return published

    async def notify_many(self, notifications: list[Notification]) -> None:
        for notification in notifications:
            await self.notify(notification)


def route_label(from_city: str, to_city: str) -> str:
    """Короткое описание маршрута для текста уведомления."""
    return f"{from_city} → {to_city}"
