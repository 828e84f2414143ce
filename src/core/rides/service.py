# src/core/rides/service.py
"""
Сервис поездок.
Публикация, изменение и жизненный цикл поездки с каскадом на бронирования.
"""

from __future__ import annotations

from typing import Any

from src.common.constants import BookingStatus, RefundSource, RideStatus
from src.common.errors import ErrorKind, PaymentProviderError, Result, RollbackSignal
from src.common.logger import log_error, log_info
from src.core.bookings.models import Booking
from src.core.bookings.repository import BookingRepository
from src.core.notifications.service import (
    Notification,
    NotificationKind,
    NotificationService,
    route_label,
)
from src.core.payments.refunds import RefundService
from src.core.pricing.resolver import SeatPriceResolver
from src.core.rides.models import Ride, RideCreateDTO, RideUpdateDTO, adjust_available_seats
from src.core.rides.repository import RideRepository
from src.infra.database import DatabaseManager


class RideService:
    """
    Сервис поездок водителя.
    """

    def __init__(
        self,
        db: DatabaseManager,
        resolver: SeatPriceResolver,
        refunds: RefundService,
        notifications: NotificationService,
    ) -> None:
        self._db = db
        self._resolver = resolver
        self._refunds = refunds
        self._notifications = notifications
        self._rides = RideRepository(db)
        self._bookings = BookingRepository(db)

    async def _owned_ride(self, driver_id: str, ride_id: str) -> Result[Ride]:
        ride = await self._rides.get_by_id(ride_id)
        if ride is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Поездка не найдена")
        if ride.driver_id != driver_id:
            return Result.fail(ErrorKind.FORBIDDEN, "Вы не водитель этой поездки")
        return Result.success(ride)

    async def _notify_passengers(
        self,
        ride: Ride,
        bookings: list[Booking],
        kind: str,
        title: str,
        body: str,
    ) -> None:
        await self._notifications.notify_many([
            Notification(
                user_id=booking.passenger_id,
                kind=kind,
                title=title,
                body=body,
                data={"ride_id": ride.id, "booking_id": booking.id},
            )
            for booking in bookings
        ])

    # =========================================================================
    # СОЗДАНИЕ И ИЗМЕНЕНИЕ
    # =========================================================================

    async def create(self, driver_id: str, dto: RideCreateDTO) -> Result[Ride]:
        """Публикует поездку; цена за место проходит через резолвер цен."""
        pricing = await self._resolver.resolve(
            from_city=dto.from_city,
            to_city=dto.to_city,
            from_lat=dto.from_lat,
            from_lng=dto.from_lng,
            to_lat=dto.to_lat,
            to_lng=dto.to_lng,
            seats=dto.seats_total,
            base_price_per_seat=dto.price_per_seat,
            departure_time=dto.start_time,
        )

        ride = await self._rides.create(
            driver_id=driver_id,
            from_city=dto.from_city,
            from_lat=dto.from_lat,
            from_lng=dto.from_lng,
            to_city=dto.to_city,
            to_lat=dto.to_lat,
            to_lng=dto.to_lng,
            start_time=dto.start_time,
            price_per_seat=pricing.price_per_seat,
            seats_total=dto.seats_total,
        )

        await log_info(
            f"Опубликована поездка {ride.id}",
            logger_name="rides",
            extra={
                "driver_id": driver_id,
                "price_per_seat": ride.price_per_seat,
                "distance_km": round(pricing.distance_km, 2),
            },
        )
        return Result.success(ride)

    async def update(self, driver_id: str, ride_id: str, dto: RideUpdateDTO) -> Result[Ride]:
        """
        Изменяет поездку.

        Изменение вместимости переносится на свободные места
        с ограничением [0, seats_total].
        """
        owned = await self._owned_ride(driver_id, ride_id)
        if not owned.ok:
            return owned

        changes: dict[str, Any] = dto.model_dump(exclude_unset=True)

        try:
            async with self._db.transaction() as conn:
                ride = await self._rides.get_by_id(ride_id, conn=conn, for_update=True)
                if ride.status in (RideStatus.COMPLETED, RideStatus.CANCELLED):
                    raise RollbackSignal(
                        ErrorKind.INVALID_STATE,
                        "Завершённую поездку нельзя изменить",
                        status=ride.status.value,
                    )

                if "seats_total" in changes:
                    changes["seats_available"] = adjust_available_seats(
                        ride.seats_available,
                        ride.seats_total,
                        changes["seats_total"],
                    )

                if "price_per_seat" in changes:
                    merged = ride.model_copy(update=changes)
                    pricing = await self._resolver.resolve(
                        from_city=merged.from_city,
                        to_city=merged.to_city,
                        from_lat=merged.from_lat,
                        from_lng=merged.from_lng,
                        to_lat=merged.to_lat,
                        to_lng=merged.to_lng,
                        seats=merged.seats_total,
                        base_price_per_seat=changes["price_per_seat"],
                        departure_time=merged.start_time,
                    )
                    changes["price_per_seat"] = pricing.price_per_seat

                updated = await self._rides.update_fields(ride_id, changes, conn=conn)
        except RollbackSignal as signal:
            return Result.from_failure(signal.failure)

        await log_info(
            f"Поездка {ride_id} изменена",
            logger_name="rides",
            extra={"fields": sorted(changes)},
        )
        return Result.success(updated)

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    async def start(self, driver_id: str, ride_id: str) -> Result[Ride]:
        """open -> ongoing."""
        owned = await self._owned_ride(driver_id, ride_id)
        if not owned.ok:
            return owned
        ride = owned.value

        updated = await self._rides.transition_status(ride_id, (RideStatus.OPEN,), RideStatus.ONGOING)
        if updated is None:
            current = await self._rides.get_by_id(ride_id)
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Начать можно только открытую поездку",
                status=(current or ride).status.value,
            )

        passengers = [b for b in await self._bookings.list_active_by_ride(ride_id) if b.holds_seats]
        await log_info(f"Поездка {ride_id} начата", logger_name="rides")
        await self._notify_passengers(
            ride,
            passengers,
            NotificationKind.RIDE_STARTED,
            "Поездка началась",
            route_label(ride.from_city, ride.to_city),
        )
        return Result.success(updated)

    async def complete(self, driver_id: str, ride_id: str) -> Result[dict[str, Any]]:
        """
        ongoing -> completed.

        Бронирования с удержанными местами завершаются, ещё не
        подтверждённые отменяются водителем.
        """
        owned = await self._owned_ride(driver_id, ride_id)
        if not owned.ok:
            return owned
        ride = owned.value

        completed: list[Booking] = []
        try:
            async with self._db.transaction() as conn:
                updated = await self._rides.transition_status(
                    ride_id,
                    (RideStatus.ONGOING,),
                    RideStatus.COMPLETED,
                    conn=conn,
                )
                if updated is None:
                    current = await self._rides.get_by_id(ride_id, conn=conn)
                    raise RollbackSignal(
                        ErrorKind.INVALID_STATE,
                        "Завершить можно только начатую поездку",
                        status=(current or ride).status.value,
                    )

                for booking in await self._bookings.list_active_by_ride(ride_id, conn=conn, for_update=True):
                    if booking.holds_seats:
                        done = await self._bookings.transition(
                            booking.id,
                            (booking.status,),
                            BookingStatus.COMPLETED,
                            conn=conn,
                        )
                        completed.append(done)
                    else:
                        await self._bookings.transition(
                            booking.id,
                            (booking.status,),
                            BookingStatus.CANCELLED_BY_DRIVER,
                            conn=conn,
                        )
        except RollbackSignal as signal:
            return Result.from_failure(signal.failure)

        await log_info(
            f"Поездка {ride_id} завершена",
            logger_name="rides",
            extra={"bookings_completed": len(completed)},
        )
        await self._notify_passengers(
            ride,
            completed,
            NotificationKind.RIDE_COMPLETED,
            "Поездка завершена",
            route_label(ride.from_city, ride.to_city),
        )
        return Result.success({"ride": updated, "bookings": completed})

    async def cancel(self, driver_id: str, ride_id: str) -> Result[dict[str, Any]]:
        """
        open|ongoing -> cancelled.

        Все активные бронирования отменяются водителем. Оплаченные
        сначала возвращаются; если хотя бы один возврат не удался,
        поездка и бронирования не меняются.
        """
        owned = await self._owned_ride(driver_id, ride_id)
        if not owned.ok:
            return owned
        ride = owned.value

        if ride.status not in (RideStatus.OPEN, RideStatus.ONGOING):
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Отменить можно только открытую или начатую поездку",
                status=ride.status.value,
            )

        refunded_ids: set[str] = set()
        for booking in await self._bookings.list_active_by_ride(ride_id):
            try:
                await self._refunds.refund_booking_if_paid(booking, RefundSource.DRIVER_CANCEL_RIDE)
            except PaymentProviderError as e:
                await log_error(
                    f"Не удалось инициировать возврат при отмене поездки: {e}",
                    logger_name="rides",
                    extra={"ride_id": ride_id, "booking_id": booking.id},
                )
                return Result.fail(
                    ErrorKind.UPSTREAM,
                    "Не удалось инициировать возврат, повторите отмену",
                    booking_id=booking.id,
                )
            if booking.is_paid:
                refunded_ids.add(booking.id)

        cancelled: list[Booking] = []
        try:
            async with self._db.transaction() as conn:
                updated = await self._rides.transition_status(
                    ride_id,
                    (RideStatus.OPEN, RideStatus.ONGOING),
                    RideStatus.CANCELLED,
                    conn=conn,
                )
                if updated is None:
                    current = await self._rides.get_by_id(ride_id, conn=conn)
                    raise RollbackSignal(
                        ErrorKind.INVALID_STATE,
                        "Статус поездки уже изменился",
                        status=(current or ride).status.value,
                    )

                for booking in await self._bookings.list_active_by_ride(ride_id, conn=conn, for_update=True):
                    if booking.is_paid and booking.id not in refunded_ids:
                        raise RollbackSignal(
                            ErrorKind.CONFLICT,
                            "Бронирование оплачено во время отмены, повторите отмену",
                            booking_id=booking.id,
                        )
                    done = await self._bookings.transition(
                        booking.id,
                        (booking.status,),
                        BookingStatus.CANCELLED_BY_DRIVER,
                        conn=conn,
                    )
                    if booking.holds_seats:
                        updated = await self._rides.release_seats(
                            ride_id,
                            booking.seats_booked,
                            conn=conn,
                        ) or updated
                    cancelled.append(done)
        except RollbackSignal as signal:
            return Result.from_failure(signal.failure)

        await log_info(
            f"Поездка {ride_id} отменена",
            logger_name="rides",
            extra={"bookings_cancelled": len(cancelled), "refunds": len(refunded_ids)},
        )
        await self._notify_passengers(
            ride,
            cancelled,
            NotificationKind.RIDE_CANCELLED,
            "Поездка отменена",
            f"{route_label(ride.from_city, ride.to_city)}: отменена водителем",
        )
        return Result.success({"ride": updated, "bookings": cancelled})

    async def list_mine(self, driver_id: str) -> list[Ride]:
        return await self._rides.list_by_driver(driver_id)
