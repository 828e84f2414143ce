# src/core/ride_requests/broadcast.py
"""
Рассылка заявок через внешний диспетчер.

Рассылка не влияет на результат операции с заявкой:
ошибки диспетчера только логируются.
"""

from __future__ import annotations

from typing import Optional

from src.common.errors import DispatchError
from src.common.logger import log_error, log_info
from src.core.ride_requests.models import RideRequest
from src.infra.dispatch_client import DispatchClient
from src.infra.event_bus import DomainEvent, EventBus, EventTypes


class RideRequestBroadcaster:
    """Объявляет новые заявки диспетчеру и снимает отменённые."""

    def __init__(
        self,
        dispatch: Optional[DispatchClient],
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self._dispatch = dispatch
        self._event_bus = event_bus

    async def announce(self, request: RideRequest) -> None:
        if self._dispatch is not None:
            try:
                await self._dispatch.dispatch(
                    ride_request_id=request.id,
                    pickup_name=request.from_city,
                    pickup_lat=request.from_lat,
                    pickup_lng=request.from_lng,
                    dropoff_name=request.to_city,
                    dropoff_lat=request.to_lat,
                    dropoff_lng=request.to_lng,
                )
                await log_info(
                    "Заявка отправлена диспетчеру",
                    logger_name="dispatch",
                    extra={"ride_request_id": request.id},
                )
            except DispatchError as e:
                await log_error(
                    f"Не удалось отправить заявку диспетчеру: {e}",
                    logger_name="dispatch",
                    extra={"ride_request_id": request.id},
                )

        if self._event_bus is not None:
            await self._event_bus.publish(DomainEvent(
                event_type=EventTypes.RIDE_REQUEST_CREATED,
                payload={
                    "ride_request_id": request.id,
                    "passenger_id": request.passenger_id,
                    "mode": request.mode.value,
                    "from_city": request.from_city,
                    "to_city": request.to_city,
                    "seats_needed": request.seats_needed,
                },
            ))

    async def withdraw(self, ride_request_id: str) -> None:
        if self._dispatch is None:
            return
        try:
            await self._dispatch.cancel(ride_request_id)
            await log_info(
                "Диспетчер уведомлён об отмене заявки",
                logger_name="dispatch",
                extra={"ride_request_id": ride_request_id},
            )
        except DispatchError as e:
            await log_error(
                f"Не удалось отменить заявку у диспетчера: {e}",
                logger_name="dispatch",
                extra={"ride_request_id": ride_request_id},
            )
