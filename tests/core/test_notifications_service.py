# tests/core/test_notifications_service.py
"""
Тесты для сервиса уведомлений.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.core.notifications.service import (
    Notification,
    NotificationKind,
    NotificationService,
    route_label,
)
from src.infra.event_bus import EventTypes


def _notification(user_id: str = "passenger-1") -> Notification:
    return Notification(
        user_id=user_id,
        kind=NotificationKind.BOOKING_CONFIRMED,
        title="Бронирование подтверждено",
        body=route_label("Toronto", "Hamilton"),
        data={"booking_id": "booking-1"},
    )


class TestNotificationService:
    """Тесты для сервиса уведомлений."""

    @pytest.fixture
    def notification_service(self, mock_event_bus: AsyncMock) -> NotificationService:
        """Создаёт сервис с моком."""
        return NotificationService(event_bus=mock_event_bus)

    @pytest.mark.asyncio
    async def test_notify_publishes_event(
        self,
        notification_service: NotificationService,
        mock_event_bus: AsyncMock,
    ) -> None:
        """Проверяет публикацию события notification.send."""
        assert await notification_service.notify(_notification()) is True

        event = mock_event_bus.publish.call_args.args[0]
        assert event.event_type == EventTypes.NOTIFICATION_SEND
        assert event.payload["user_id"] == "passenger-1"
        assert event.payload["kind"] == "booking_confirmed"
        assert event.payload["data"] == {"booking_id": "booking-1"}

    @pytest.mark.asyncio
    async def test_notify_swallows_bus_errors(
        self,
        notification_service: NotificationService,
        mock_event_bus: AsyncMock,
    ) -> None:
        """Ошибка шины не пробрасывается наружу."""
        mock_event_bus.publish.side_effect = ConnectionError("channel closed")

        assert await notification_service.notify(_notification()) is False

    @pytest.mark.asyncio
    async def test_notify_many(
        self,
        notification_service: NotificationService,
        mock_event_bus: AsyncMock,
    ) -> None:
        await notification_service.notify_many([_notification("a"), _notification("b")])

        assert mock_event_bus.publish.await_count == 2


def test_route_label() -> None:
    assert route_label("Toronto", "Hamilton") == "Toronto → Hamilton"
