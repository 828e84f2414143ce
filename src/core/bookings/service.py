# src/core/bookings/service.py
"""
Сервис бронирований.
Жизненный цикл бронирования и резервирование мест в поездке.
"""

from __future__ import annotations

from src.common.constants import BookingStatus, RefundSource
from src.common.errors import ErrorKind, PaymentProviderError, Result, RollbackSignal
from src.common.logger import log_error, log_info
from src.core.bookings.models import Booking, BookingCreateDTO, BookingRideResult
from src.core.bookings.repository import BookingRepository
from src.core.bookings.state_machine import BookingStateMachine
from src.core.notifications.service import (
    Notification,
    NotificationKind,
    NotificationService,
    route_label,
)
from src.core.payments.refunds import RefundService
from src.core.rides.models import Ride
from src.core.rides.repository import RideRepository
from src.infra.database import DatabaseManager


def _seats_label(seats: int) -> str:
    return f"{seats} мест" if seats != 1 else "1 место"


class BookingService:
    """
    Сервис бронирований.

    Места списываются только при подтверждении водителем и
    возвращаются (не больше вместимости) при отмене подтверждённого бронирования.
    """

    def __init__(
        self,
        db: DatabaseManager,
        refunds: RefundService,
        notifications: NotificationService,
    ) -> None:
        self._db = db
        self._refunds = refunds
        self._notifications = notifications
        self._bookings = BookingRepository(db)
        self._rides = RideRepository(db)

    async def _load(self, booking_id: str) -> tuple[Booking | None, Ride | None]:
        booking = await self._bookings.get_by_id(booking_id)
        if booking is None:
            return None, None
        return booking, await self._rides.get_by_id(booking.ride_id)

    # =========================================================================
    # СОЗДАНИЕ
    # =========================================================================

    async def create(
        self,
        passenger_id: str,
        ride_id: str,
        dto: BookingCreateDTO,
    ) -> Result[Booking]:
        """
        Создаёт бронирование в статусе pending.

        Места не списываются до подтверждения водителем.
        """
        ride = await self._rides.get_by_id(ride_id)
        if ride is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Поездка не найдена")

        if ride.driver_id == passenger_id:
            return Result.fail(ErrorKind.VALIDATION, "Нельзя забронировать свою поездку")

        if not ride.is_open:
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Поездка закрыта для бронирования",
                status=ride.status.value,
            )

        if dto.seats > ride.seats_total:
            return Result.fail(
                ErrorKind.VALIDATION,
                "Мест больше, чем вместимость поездки",
                seats_total=ride.seats_total,
            )

        if dto.seats > ride.seats_available:
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Недостаточно свободных мест",
                seats_available=ride.seats_available,
            )

        booking = await self._bookings.create(
            ride_id=ride.id,
            passenger_id=passenger_id,
            seats_booked=dto.seats,
            pickup_name=dto.pickup_name,
            pickup_lat=dto.pickup_lat,
            pickup_lng=dto.pickup_lng,
            dropoff_name=dto.dropoff_name,
            dropoff_lat=dto.dropoff_lat,
            dropoff_lng=dto.dropoff_lng,
        )

        await log_info(
            f"Создано бронирование {booking.id}",
            logger_name="bookings",
            extra={"ride_id": ride.id, "passenger_id": passenger_id, "seats": dto.seats},
        )
        await self._notifications.notify(Notification(
            user_id=ride.driver_id,
            kind=NotificationKind.BOOKING_REQUESTED,
            title="Новая заявка на бронирование",
            body=f"{route_label(ride.from_city, ride.to_city)} ({_seats_label(dto.seats)})",
            data={"booking_id": booking.id, "ride_id": ride.id},
        ))
        return Result.success(booking)

    # =========================================================================
    # ДЕЙСТВИЯ ВОДИТЕЛЯ
    # =========================================================================

    async def confirm(self, driver_id: str, booking_id: str) -> Result[BookingRideResult]:
        """
        Подтверждает бронирование и списывает места.

        Смена статуса pending -> accepted и условное списание мест
        выполняются в одной транзакции.
        """
        booking, ride = await self._load(booking_id)
        if booking is None or ride is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Бронирование не найдено")

        if ride.driver_id != driver_id:
            return Result.fail(ErrorKind.FORBIDDEN, "Вы не водитель этой поездки")

        if booking.status == BookingStatus.ACCEPTED:
            return Result.success(BookingRideResult(booking=booking, ride=ride), idempotent=True)

        if booking.status != BookingStatus.PENDING:
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Подтвердить можно только ожидающее бронирование",
                status=booking.status.value,
            )

        if booking.seats_booked > ride.seats_total:
            return Result.fail(ErrorKind.VALIDATION, "Мест больше, чем вместимость поездки")

        try:
            async with self._db.transaction() as conn:
                updated = await self._bookings.transition(
                    booking.id,
                    (BookingStatus.PENDING,),
                    BookingStatus.ACCEPTED,
                    conn=conn,
                )
                if updated is None:
                    raise RollbackSignal(ErrorKind.INVALID_STATE, "Статус бронирования уже изменился")

                reserved = await self._rides.reserve_seats(ride.id, booking.seats_booked, conn=conn)
                if reserved is None:
                    current = await self._rides.get_by_id(ride.id, conn=conn)
                    if current is not None and not current.is_open:
                        raise RollbackSignal(
                            ErrorKind.INVALID_STATE,
                            "Поездка закрыта для бронирования",
                            status=current.status.value,
                        )
                    raise RollbackSignal(
                        ErrorKind.INVALID_STATE,
                        "Недостаточно свободных мест",
                        seats_available=current.seats_available if current else 0,
                    )
        except RollbackSignal as signal:
            return Result.from_failure(signal.failure)

        await log_info(
            f"Бронирование {booking.id} подтверждено",
            logger_name="bookings",
            extra={"ride_id": ride.id, "seats_available": reserved.seats_available},
        )
        await self._notifications.notify(Notification(
            user_id=booking.passenger_id,
            kind=NotificationKind.BOOKING_CONFIRMED,
            title="Бронирование подтверждено",
            body=route_label(ride.from_city, ride.to_city),
            data={"booking_id": booking.id, "ride_id": ride.id},
        ))
        return Result.success(BookingRideResult(booking=updated, ride=reserved))

    async def reject(self, driver_id: str, booking_id: str) -> Result[BookingRideResult]:
        """Отклоняет ожидающее бронирование; места не меняются."""
        booking, ride = await self._load(booking_id)
        if booking is None or ride is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Бронирование не найдено")

        if ride.driver_id != driver_id:
            return Result.fail(ErrorKind.FORBIDDEN, "Вы не водитель этой поездки")

        if booking.status != BookingStatus.PENDING:
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Отклонить можно только ожидающее бронирование",
                status=booking.status.value,
            )

        updated = await self._bookings.transition(
            booking.id,
            (BookingStatus.PENDING,),
            BookingStatus.CANCELLED_BY_DRIVER,
        )
        if updated is None:
            return Result.fail(ErrorKind.INVALID_STATE, "Статус бронирования уже изменился")

        await log_info(f"Бронирование {booking.id} отклонено", logger_name="bookings")
        await self._notifications.notify(Notification(
            user_id=booking.passenger_id,
            kind=NotificationKind.BOOKING_REJECTED,
            title="Бронирование отклонено",
            body=route_label(ride.from_city, ride.to_city),
            data={"booking_id": booking.id, "ride_id": ride.id},
        ))
        return Result.success(BookingRideResult(booking=updated, ride=ride))

    async def cancel_by_driver(self, driver_id: str, booking_id: str) -> Result[BookingRideResult]:
        booking, ride = await self._load(booking_id)
        if booking is None or ride is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Бронирование не найдено")

        if ride.driver_id != driver_id:
            return Result.fail(ErrorKind.FORBIDDEN, "Вы не водитель этой поездки")

        result = await self.cancel_booking(
            booking,
            ride,
            BookingStatus.CANCELLED_BY_DRIVER,
            RefundSource.DRIVER_CANCEL_BOOKING,
        )
        if result.ok and not result.idempotent:
            await self._notifications.notify(Notification(
                user_id=booking.passenger_id,
                kind=NotificationKind.BOOKING_CANCELLED_BY_DRIVER,
                title="Бронирование отменено",
                body=f"{route_label(ride.from_city, ride.to_city)}: отменено водителем",
                data={"booking_id": booking.id, "ride_id": ride.id},
            ))
        return result

    # =========================================================================
    # ДЕЙСТВИЯ ПАССАЖИРА
    # =========================================================================

    async def cancel_by_passenger(
        self,
        passenger_id: str,
        booking_id: str,
    ) -> Result[BookingRideResult]:
        booking, ride = await self._load(booking_id)
        if booking is None or ride is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Бронирование не найдено")

        if booking.passenger_id != passenger_id:
            return Result.fail(ErrorKind.FORBIDDEN, "Можно отменить только своё бронирование")

        result = await self.cancel_booking(
            booking,
            ride,
            BookingStatus.CANCELLED_BY_PASSENGER,
            RefundSource.PASSENGER_CANCEL_BOOKING,
        )
        if result.ok and not result.idempotent:
            await self._notifications.notify(Notification(
                user_id=ride.driver_id,
                kind=NotificationKind.BOOKING_CANCELLED_BY_PASSENGER,
                title="Бронирование отменено",
                body=f"{route_label(ride.from_city, ride.to_city)}: отменено пассажиром",
                data={"booking_id": booking.id, "ride_id": ride.id},
            ))
        return result

    # =========================================================================
    # ОТМЕНА
    # =========================================================================

    async def cancel_booking(
        self,
        booking: Booking,
        ride: Ride,
        new_status: BookingStatus,
        source: RefundSource,
    ) -> Result[BookingRideResult]:
        """
        Отменяет бронирование.

        Оплаченное бронирование сначала возвращается провайдером; если
        возврат не удался, статус не меняется и возвращается ошибка UPSTREAM.
        Места возвращаются только если бронирование их удерживало.
        """
        if booking.status == new_status:
            return Result.success(BookingRideResult(booking=booking, ride=ride), idempotent=True)

        if not BookingStateMachine.can_transition(booking.status, new_status):
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Бронирование нельзя отменить в текущем статусе",
                status=booking.status.value,
            )

        try:
            await self._refunds.refund_booking_if_paid(booking, source)
        except PaymentProviderError as e:
            await log_error(
                f"Не удалось инициировать возврат: {e}",
                logger_name="bookings",
                extra={
                    "booking_id": booking.id,
                    "payment_intent_id": booking.payment_intent_id,
                    "source": source.value,
                },
            )
            return Result.fail(
                ErrorKind.UPSTREAM,
                "Не удалось инициировать возврат, повторите отмену",
                booking_id=booking.id,
            )

        try:
            async with self._db.transaction() as conn:
                current = await self._bookings.get_by_id(booking.id, conn=conn, for_update=True)
                if current is None or not BookingStateMachine.can_transition(current.status, new_status):
                    raise RollbackSignal(
                        ErrorKind.INVALID_STATE,
                        "Статус бронирования уже изменился",
                        status=current.status.value if current else None,
                    )
                if current.is_paid and not booking.is_paid:
                    raise RollbackSignal(
                        ErrorKind.CONFLICT,
                        "Бронирование оплачено во время отмены, повторите отмену",
                        booking_id=booking.id,
                    )

                updated = await self._bookings.transition(
                    booking.id,
                    (current.status,),
                    new_status,
                    conn=conn,
                )
                ride_after = ride
                if current.holds_seats:
                    ride_after = await self._rides.release_seats(
                        ride.id,
                        current.seats_booked,
                        conn=conn,
                    )
        except RollbackSignal as signal:
            return Result.from_failure(signal.failure)

        await log_info(
            f"Бронирование {booking.id} отменено",
            logger_name="bookings",
            extra={
                "status": new_status.value,
                "seats_restored": current.seats_booked if current.holds_seats else 0,
            },
        )
        return Result.success(BookingRideResult(booking=updated, ride=ride_after))

    # =========================================================================
    # СПИСКИ
    # =========================================================================

    async def list_mine(self, passenger_id: str) -> list[Booking]:
        return await self._bookings.list_by_passenger(passenger_id)

    async def list_for_ride(self, driver_id: str, ride_id: str) -> Result[list[Booking]]:
        """Бронирования поездки (только для её водителя)."""
        ride = await self._rides.get_by_id(ride_id)
        if ride is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Поездка не найдена")
        if ride.driver_id != driver_id:
            return Result.fail(ErrorKind.FORBIDDEN, "Вы не водитель этой поездки")
        return Result.success(await self._bookings.list_by_ride(ride_id))
