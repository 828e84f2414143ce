# src/core/ride_requests/offers.py
"""
Предложения водителей по заявкам в режиме OFFER.
"""

from __future__ import annotations

from typing import Optional

from asyncpg import UniqueViolationError

from src.common.constants import BookingStatus, OfferStatus, RideRequestMode
from src.common.errors import ErrorKind, Result, RollbackSignal
from src.common.logger import log_info, log_warning
from src.core.bookings.repository import BookingRepository
from src.core.notifications.service import (
    Notification,
    NotificationKind,
    NotificationService,
    route_label,
)
from src.core.ride_requests.models import (
    OfferAcceptResult,
    OfferCreateDTO,
    RideRequest,
    RideRequestOffer,
)
from src.core.ride_requests.repository import OfferRepository, RideRequestRepository
from src.core.rides.repository import RideRepository
from src.infra.database import DatabaseManager

# Отклонённое или отозванное предложение можно отправить заново
_REVIVABLE = (OfferStatus.REJECTED, OfferStatus.CANCELLED)


class OfferService:
    """Сервис предложений водителей."""

    def __init__(self, db: DatabaseManager, notifications: NotificationService) -> None:
        self._db = db
        self._notifications = notifications
        self._requests = RideRequestRepository(db)
        self._offers = OfferRepository(db)
        self._rides = RideRepository(db)
        self._bookings = BookingRepository(db)

    async def _load_pair(
        self,
        ride_request_id: str,
        offer_id: str,
    ) -> tuple[Optional[RideRequest], Optional[RideRequestOffer]]:
        offer = await self._offers.get_by_id(offer_id)
        if offer is None or offer.ride_request_id != ride_request_id:
            return None, None
        return await self._requests.get_by_id(ride_request_id), offer

    # =========================================================================
    # ВОДИТЕЛЬ
    # =========================================================================

    async def create(
        self,
        driver_id: str,
        ride_request_id: str,
        dto: OfferCreateDTO,
    ) -> Result[RideRequestOffer]:
        """
        Предлагает пассажиру место в своей поездке.

        Цена предложения равна цене места в поездке. Отклонённое ранее
        предложение на ту же поездку возвращается в статус pending.
        """
        request = await self._requests.get_by_id(ride_request_id)
        if request is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Заявка не найдена")

        if request.mode != RideRequestMode.OFFER:
            return Result.fail(ErrorKind.INVALID_STATE, "Предложения принимаются только по заявкам OFFER")

        if not request.is_active:
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Заявка уже закрыта",
                status=request.status.value,
            )

        if request.passenger_id == driver_id:
            return Result.fail(ErrorKind.VALIDATION, "Нельзя предложить поездку самому себе")

        ride = await self._rides.get_by_id(dto.ride_id)
        if ride is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Поездка не найдена")

        if ride.driver_id != driver_id:
            return Result.fail(ErrorKind.FORBIDDEN, "Вы не водитель этой поездки")

        if not ride.is_open:
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Поездка не открыта для бронирования",
                status=ride.status.value,
            )

        seats = dto.seats_offered if dto.seats_offered is not None else request.seats_needed
        if seats < request.seats_needed:
            return Result.fail(
                ErrorKind.VALIDATION,
                "Предложено меньше мест, чем нужно пассажиру",
                seats_needed=request.seats_needed,
            )

        if ride.seats_available < seats:
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Недостаточно свободных мест",
                seats_available=ride.seats_available,
            )

        existing = await self._offers.find(request.id, driver_id, ride.id)
        if existing is not None and existing.status not in _REVIVABLE:
            return Result.fail(
                ErrorKind.CONFLICT,
                "Предложение на эту поездку уже отправлено",
                offer_id=existing.id,
            )

        if existing is not None:
            offer = await self._offers.update(
                existing.id,
                status=OfferStatus.PENDING,
                seats_offered=seats,
                price_per_seat=ride.price_per_seat,
            )
        else:
            try:
                offer = await self._offers.create(
                    ride_request_id=request.id,
                    driver_id=driver_id,
                    ride_id=ride.id,
                    seats_offered=seats,
                    price_per_seat=ride.price_per_seat,
                )
            except UniqueViolationError:
                return Result.fail(ErrorKind.CONFLICT, "Предложение на эту поездку уже отправлено")

        await log_info(
            f"Предложение {offer.id} по заявке {request.id}",
            logger_name="offers",
            extra={"driver_id": driver_id, "ride_id": ride.id, "revived": existing is not None},
        )
        await self._notifications.notify(Notification(
            user_id=request.passenger_id,
            kind=NotificationKind.OFFER_CREATED,
            title="Новое предложение",
            body=f"{route_label(ride.from_city, ride.to_city)}: {offer.price_per_seat:.2f} за место",
            data={"ride_request_id": request.id, "offer_id": offer.id},
        ))
        return Result.success(offer)

    async def cancel(self, driver_id: str, ride_request_id: str, offer_id: str) -> Result[RideRequestOffer]:
        """Водитель отзывает своё ожидающее предложение."""
        request, offer = await self._load_pair(ride_request_id, offer_id)
        if offer is None or request is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Предложение не найдено")

        if offer.driver_id != driver_id:
            return Result.fail(ErrorKind.FORBIDDEN, "Это предложение другого водителя")

        if offer.status == OfferStatus.CANCELLED:
            return Result.success(offer, idempotent=True)

        cancelled = await self._offers.transition(offer.id, OfferStatus.PENDING, OfferStatus.CANCELLED)
        if cancelled is None:
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Отозвать можно только ожидающее предложение",
                status=offer.status.value,
            )

        await log_info(f"Предложение {offer.id} отозвано", logger_name="offers")
        await self._notifications.notify(Notification(
            user_id=request.passenger_id,
            kind=NotificationKind.OFFER_CANCELLED,
            title="Предложение отозвано",
            body=route_label(request.from_city, request.to_city),
            data={"ride_request_id": request.id, "offer_id": offer.id},
        ))
        return Result.success(cancelled)

    # =========================================================================
    # ПАССАЖИР
    # =========================================================================

    async def accept(
        self,
        passenger_id: str,
        ride_request_id: str,
        offer_id: str,
    ) -> Result[OfferAcceptResult]:
        """
        Принимает предложение.

        Одной транзакцией: предложение принято, заявка закрыта за водителем,
        создано бронирование в статусе accepted, места списаны,
        остальные ожидающие предложения отклонены.
        """
        request, offer = await self._load_pair(ride_request_id, offer_id)
        if offer is None or request is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Предложение не найдено")

        if request.passenger_id != passenger_id:
            return Result.fail(ErrorKind.FORBIDDEN, "Это не ваша заявка")

        if offer.status == OfferStatus.ACCEPTED and offer.booking_id:
            booking = await self._bookings.get_by_id(offer.booking_id)
            ride = await self._rides.get_by_id(offer.ride_id) if offer.ride_id else None
            return Result.success(
                OfferAcceptResult(offer=offer, ride_request=request, booking=booking, ride=ride),
                idempotent=True,
            )

        if offer.status != OfferStatus.PENDING:
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Предложение уже не ожидает ответа",
                status=offer.status.value,
            )

        if not request.is_active:
            return Result.fail(ErrorKind.CONFLICT, "Заявка уже закрыта", status=request.status.value)

        if offer.ride_id is None:
            return Result.fail(ErrorKind.INVALID_STATE, "Предложение не привязано к поездке")

        try:
            async with self._db.transaction() as conn:
                ride = await self._rides.get_by_id(offer.ride_id, conn=conn, for_update=True)
                if ride is None or not ride.is_open:
                    raise RollbackSignal(ErrorKind.INVALID_STATE, "Поездка не открыта для бронирования")

                accepted = await self._offers.transition(
                    offer.id,
                    OfferStatus.PENDING,
                    OfferStatus.ACCEPTED,
                    conn=conn,
                )
                if accepted is None:
                    raise RollbackSignal(ErrorKind.CONFLICT, "Предложение уже обработано")

                closed = await self._requests.mark_accepted(request.id, offer.driver_id, conn=conn)
                if closed is None:
                    raise RollbackSignal(ErrorKind.CONFLICT, "Заявка уже закрыта")

                booking = await self._bookings.create(
                    ride_id=ride.id,
                    passenger_id=passenger_id,
                    seats_booked=offer.seats_offered,
                    status=BookingStatus.ACCEPTED,
                    pickup_name=request.from_city,
                    pickup_lat=request.from_lat,
                    pickup_lng=request.from_lng,
                    dropoff_name=request.to_city,
                    dropoff_lat=request.to_lat,
                    dropoff_lng=request.to_lng,
                    conn=conn,
                )

                ride = await self._rides.reserve_seats(ride.id, offer.seats_offered, conn=conn)
                if ride is None:
                    raise RollbackSignal(ErrorKind.INVALID_STATE, "Недостаточно свободных мест")

                accepted = await self._offers.update(
                    offer.id,
                    status=OfferStatus.ACCEPTED,
                    booking_id=booking.id,
                    conn=conn,
                )
                rejected = await self._offers.reject_other_pending(
                    request.id,
                    keep_offer_id=offer.id,
                    conn=conn,
                )
        except RollbackSignal as signal:
            await log_warning(
                f"Предложение {offer.id} не принято: {signal.failure.message}",
                logger_name="offers",
            )
            return Result.from_failure(signal.failure)

        await log_info(
            f"Предложение {offer.id} принято",
            logger_name="offers",
            extra={
                "ride_request_id": request.id,
                "booking_id": booking.id,
                "offers_rejected": rejected,
            },
        )
        await self._notifications.notify(Notification(
            user_id=offer.driver_id,
            kind=NotificationKind.OFFER_ACCEPTED,
            title="Предложение принято",
            body=route_label(ride.from_city, ride.to_city),
            data={"ride_request_id": request.id, "booking_id": booking.id, "ride_id": ride.id},
        ))
        return Result.success(
            OfferAcceptResult(offer=accepted, ride_request=closed, booking=booking, ride=ride)
        )

    async def reject(
        self,
        passenger_id: str,
        ride_request_id: str,
        offer_id: str,
    ) -> Result[RideRequestOffer]:
        request, offer = await self._load_pair(ride_request_id, offer_id)
        if offer is None or request is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Предложение не найдено")

        if request.passenger_id != passenger_id:
            return Result.fail(ErrorKind.FORBIDDEN, "Это не ваша заявка")

        if offer.status == OfferStatus.REJECTED:
            return Result.success(offer, idempotent=True)

        rejected = await self._offers.transition(offer.id, OfferStatus.PENDING, OfferStatus.REJECTED)
        if rejected is None:
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Отклонить можно только ожидающее предложение",
                status=offer.status.value,
            )

        await log_info(f"Предложение {offer.id} отклонено", logger_name="offers")
        await self._notifications.notify(Notification(
            user_id=offer.driver_id,
            kind=NotificationKind.OFFER_REJECTED,
            title="Предложение отклонено",
            body=route_label(request.from_city, request.to_city),
            data={"ride_request_id": request.id, "offer_id": offer.id},
        ))
        return Result.success(rejected)

    async def list_for_request(self, user_id: str, ride_request_id: str) -> Result[list[RideRequestOffer]]:
        """Пассажир видит все предложения по своей заявке, водитель только свои."""
        request = await self._requests.get_by_id(ride_request_id)
        if request is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Заявка не найдена")

        driver_filter = None if request.passenger_id == user_id else user_id
        return Result.success(await self._offers.list_by_request(request.id, driver_filter))
