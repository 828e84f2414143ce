# src/core/ride_requests/service.py
"""
Сервис заявок пассажиров.
Создание, изменение и отмена заявок, принятие заявки внешним диспетчером.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional

from asyncpg import Connection

from src.common.constants import (
    ACTIVE_RIDE_REQUEST_STATUSES,
    BookingPaymentStatus,
    BookingStatus,
    OfferStatus,
    PaymentStatus,
    RefundSource,
    RideRequestStatus,
)
from src.common.errors import ErrorKind, PaymentProviderError, Result, RollbackSignal
from src.common.logger import log_error, log_info
from src.config.loader import PricingSettings
from src.core.bookings.repository import BookingRepository
from src.core.payments.refunds import RefundService
from src.core.payments.repository import PaymentRepository
from src.core.pricing.fare import platform_fee_cents
from src.core.pricing.geo import bounding_box, haversine_km, is_valid_coordinate
from src.core.pricing.money import round_half_up, round_to_cents
from src.core.pricing.resolver import hours_until
from src.core.ride_requests.broadcast import RideRequestBroadcaster
from src.core.ride_requests.models import (
    DispatchAcceptDTO,
    DispatchAcceptResult,
    RideRequest,
    RideRequestCreateDTO,
    RideRequestOffer,
    RideRequestPage,
    RideRequestSearch,
    RideRequestUpdateDTO,
    is_terminal_request_status,
)
from src.core.ride_requests.repository import OfferRepository, RideRequestRepository
from src.core.rides.repository import RideRepository
from src.infra.database import DatabaseManager

_ACTIVE = tuple(ACTIVE_RIDE_REQUEST_STATUSES)

MAX_SEARCH_RADIUS_KM = 100.0
DEFAULT_SEARCH_PAGE_SIZE = 50
MAX_SEARCH_PAGE_SIZE = 100


def fallback_price_per_seat(request: RideRequest) -> float:
    """
    Цена за место, если диспетчер её не передал.

    Котировка JIT-заявки, иначе оплаченная сумма на одно место, иначе 0.
    """
    if request.quoted_price_per_seat is not None:
        return float(request.quoted_price_per_seat)
    if request.jit_amount_cents is not None:
        return round_to_cents(request.jit_amount_cents / max(request.seats_needed, 1) / 100)
    return 0.0


class RideRequestService:
    """
    Сервис заявок.

    Рассылка диспетчеру и уведомления не влияют на результат операции.
    """

    def __init__(
        self,
        db: DatabaseManager,
        broadcaster: RideRequestBroadcaster,
        refunds: RefundService,
        rules: PricingSettings,
        *,
        platform_fee_pct: float,
        currency: str,
    ) -> None:
        self._db = db
        self._broadcaster = broadcaster
        self._refunds = refunds
        self._rules = rules
        self._fee_pct = platform_fee_pct
        self._currency = currency
        self._requests = RideRequestRepository(db)
        self._offers = OfferRepository(db)
        self._rides = RideRepository(db)
        self._bookings = BookingRepository(db)
        self._payments = PaymentRepository(db)

    # =========================================================================
    # ЗАЯВКИ ПАССАЖИРА
    # =========================================================================

    async def create(
        self,
        passenger_id: str,
        dto: RideRequestCreateDTO,
        *,
        now: Optional[datetime] = None,
    ) -> Result[RideRequest]:
        """
        Создаёт заявку в режиме предложений и рассылает её водителям.

        Для отправления в пределах JIT-окна заявка не создаётся:
        такие поездки оформляются через JIT-оплату.
        """
        hours = hours_until(dto.preferred_date, now or datetime.now(timezone.utc))
        if hours < 0:
            return Result.fail(ErrorKind.VALIDATION, "Дата поездки должна быть в будущем")
        if hours <= self._rules.JIT_WINDOW_HOURS:
            return Result.fail(
                ErrorKind.VALIDATION,
                f"Для поездок в ближайшие {self._rules.JIT_WINDOW_HOURS:g} ч используйте JIT-оплату",
            )

        request = await self._requests.create(passenger_id, dto, status=RideRequestStatus.OFFERING)
        await log_info(
            f"Создана заявка {request.id}",
            logger_name="ride_requests",
            extra={"passenger_id": passenger_id, "seats_needed": request.seats_needed},
        )
        await self._broadcaster.announce(request)
        return Result.success(request)

    async def update(
        self,
        passenger_id: str,
        ride_request_id: str,
        dto: RideRequestUpdateDTO,
    ) -> Result[RideRequest]:
        """Изменяет активную заявку в режиме предложений."""
        request = await self._requests.get_by_id(ride_request_id)
        if request is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Заявка не найдена")

        if request.passenger_id != passenger_id:
            return Result.fail(ErrorKind.FORBIDDEN, "Можно изменить только свою заявку")

        if request.is_jit:
            return Result.fail(ErrorKind.INVALID_STATE, "Оплаченную JIT-заявку нельзя изменить")

        if not request.is_active:
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Изменить можно только активную заявку",
                status=request.status.value,
            )

        changes: dict[str, Any] = dto.model_dump(exclude_unset=True)
        for pair in (("from_lat", "from_lng"), ("to_lat", "to_lng")):
            given = [name for name in pair if changes.get(name) is not None]
            if len(given) == 1:
                return Result.fail(ErrorKind.VALIDATION, f"{pair[0]} и {pair[1]} передаются вместе")

        updated = await self._requests.update_fields(ride_request_id, changes)
        await log_info(
            f"Заявка {ride_request_id} изменена",
            logger_name="ride_requests",
            extra={"fields": sorted(changes)},
        )
        return Result.success(updated)

    async def cancel(self, passenger_id: str, ride_request_id: str) -> Result[RideRequest]:
        """
        Отменяет заявку.

        Повторная отмена возвращает заявку без изменений. Для JIT-заявки
        сначала инициируется возврат; при ошибке возврата статус не меняется.
        """
        request = await self._requests.get_by_id(ride_request_id)
        if request is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Заявка не найдена")

        if request.passenger_id != passenger_id:
            return Result.fail(ErrorKind.FORBIDDEN, "Можно отменить только свою заявку")

        if request.status == RideRequestStatus.CANCELLED:
            return Result.success(request, idempotent=True)

        if not request.is_active:
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Заявка уже закрыта",
                status=request.status.value,
            )

        if request.is_jit:
            try:
                await self._refunds.refund_ride_request(
                    request.id,
                    request.jit_payment_intent_id,
                    RefundSource.PASSENGER_CANCEL_RIDE_REQUEST,
                )
            except PaymentProviderError as e:
                await log_error(
                    f"Не удалось инициировать возврат по заявке: {e}",
                    logger_name="ride_requests",
                    extra={
                        "ride_request_id": request.id,
                        "payment_intent_id": request.jit_payment_intent_id,
                    },
                )
                return Result.fail(
                    ErrorKind.UPSTREAM,
                    "Не удалось инициировать возврат, повторите отмену",
                    ride_request_id=request.id,
                )

        updated = await self._requests.transition(request.id, _ACTIVE, RideRequestStatus.CANCELLED)
        if updated is None:
            current = await self._requests.get_by_id(request.id)
            if current is not None and current.status == RideRequestStatus.CANCELLED:
                return Result.success(current, idempotent=True)
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Заявка уже закрыта",
                status=current.status.value if current else None,
            )

        await log_info(f"Заявка {request.id} отменена", logger_name="ride_requests")
        await self._broadcaster.withdraw(request.id)
        return Result.success(updated)

    async def list_mine(self, passenger_id: str) -> list[RideRequest]:
        return await self._requests.list_by_passenger(passenger_id)

    async def search(self, query: RideRequestSearch) -> Result[RideRequestPage]:
        """
        Поиск заявок водителем.

        По умолчанию ищутся активные заявки. С точкой посадки результаты
        ограничены радиусом и отсортированы по расстоянию до неё, затем
        от новых к старым. Пагинация по id последней заявки страницы.
        """
        for lat_name, lng_name in (("lat", "lng"), ("to_lat", "to_lng")):
            lat, lng = getattr(query, lat_name), getattr(query, lng_name)
            if (lat is None) != (lng is None):
                return Result.fail(ErrorKind.VALIDATION, f"{lat_name} и {lng_name} передаются вместе")
            if lat is not None and not is_valid_coordinate(lat, lng):
                return Result.fail(
                    ErrorKind.VALIDATION,
                    f"{lat_name} должна быть в [-90, 90], {lng_name} в [-180, 180]",
                )

        radius = query.radius_km
        if not math.isfinite(radius) or radius <= 0 or radius > MAX_SEARCH_RADIUS_KM:
            return Result.fail(
                ErrorKind.VALIDATION,
                f"radius_km должен быть больше 0 и не больше {MAX_SEARCH_RADIUS_KM:g}",
            )

        pickup = (query.lat, query.lng) if query.lat is not None else None
        dropoff = (query.to_lat, query.to_lng) if query.to_lat is not None else None
        statuses = [query.status] if query.status is not None else list(_ACTIVE)

        candidates = await self._requests.search(
            statuses,
            from_city=query.from_city,
            to_city=query.to_city,
            pickup_box=bounding_box(*pickup, radius) if pickup else None,
            dropoff_box=bounding_box(*dropoff, radius) if dropoff else None,
        )

        if dropoff:
            candidates = [
                r for r in candidates
                if haversine_km(*dropoff, r.to_lat, r.to_lng) <= radius
            ]
        if pickup:
            distances = {r.id: haversine_km(*pickup, r.from_lat, r.from_lng) for r in candidates}
            candidates = [r for r in candidates if distances[r.id] <= radius]
            # Кандидаты уже от новых к старым, сортировка устойчива
            candidates.sort(key=lambda r: distances[r.id])

        if query.cursor:
            ids = [r.id for r in candidates]
            if query.cursor in ids:
                candidates = candidates[ids.index(query.cursor) + 1:]

        limit = min(query.limit, MAX_SEARCH_PAGE_SIZE) if query.limit > 0 else DEFAULT_SEARCH_PAGE_SIZE
        page = candidates[:limit]
        next_cursor = page[-1].id if len(candidates) > limit else None
        return Result.success(RideRequestPage(requests=page, next_cursor=next_cursor))

    # =========================================================================
    # ПРИНЯТИЕ ДИСПЕТЧЕРОМ
    # =========================================================================

    async def accept_from_dispatcher(
        self,
        ride_request_id: str,
        dto: DispatchAcceptDTO,
    ) -> Result[DispatchAcceptResult]:
        """
        Принимает заявку за водителя, выбранного диспетчером.

        Повторный вызов для принятой заявки возвращает прежний результат
        с idempotent=True. Для JIT-заявки в той же транзакции создаются
        поездка, оплаченное бронирование и запись платежа.
        """
        request = await self._requests.get_by_id(ride_request_id)
        if request is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Заявка не найдена")

        await log_info(
            "Диспетчер принимает заявку",
            logger_name="ride_requests",
            extra={"ride_request_id": request.id, "driver_id": dto.driver_id},
        )

        if request.status == RideRequestStatus.ACCEPTED:
            return await self._existing_acceptance(request)

        if is_terminal_request_status(request.status) or not request.is_active:
            return Result.fail(ErrorKind.CONFLICT, "Заявка закрыта", status=request.status.value)

        if dto.ride_id:
            ride = await self._rides.get_by_id(dto.ride_id)
            if ride is None or ride.driver_id != dto.driver_id:
                return Result.fail(ErrorKind.VALIDATION, "ride_id не принадлежит водителю")

        seats = dto.seats_offered if dto.seats_offered is not None else request.seats_needed
        price = dto.price_per_seat if dto.price_per_seat is not None else fallback_price_per_seat(request)

        if request.is_jit:
            if price <= 0:
                return Result.fail(ErrorKind.VALIDATION, "Цена за место должна быть положительной")
            if seats < request.seats_needed:
                return Result.fail(
                    ErrorKind.VALIDATION,
                    "Предложено меньше мест, чем нужно пассажиру",
                    seats_needed=request.seats_needed,
                )
        elif price < 0:
            return Result.fail(ErrorKind.VALIDATION, "Цена за место не может быть отрицательной")

        try:
            async with self._db.transaction() as conn:
                accepted = await self._requests.mark_accepted(request.id, dto.driver_id, conn=conn)
                if accepted is None:
                    raise RollbackSignal(ErrorKind.CONFLICT, "Заявка уже обработана")

                if request.is_jit:
                    result = await self._accept_jit(accepted, dto.driver_id, seats, price, conn)
                else:
                    offer = await self._upsert_accepted_offer(
                        accepted,
                        dto.driver_id,
                        dto.ride_id,
                        seats,
                        price,
                        None,
                        conn,
                    )
                    result = DispatchAcceptResult(
                        ride_request_id=accepted.id,
                        status=accepted.status,
                        driver_id=accepted.driver_id,
                        ride_request=accepted,
                        offer=offer,
                    )

                rejected = await self._offers.reject_other_pending(
                    accepted.id,
                    keep_offer_id=result.offer.id if result.offer else None,
                    conn=conn,
                )
        except RollbackSignal as signal:
            current = await self._requests.get_by_id(request.id)
            if current is not None and current.status == RideRequestStatus.ACCEPTED:
                return await self._existing_acceptance(current)
            return Result.from_failure(signal.failure)

        await log_info(
            f"Заявка {request.id} принята диспетчером",
            logger_name="ride_requests",
            extra={
                "driver_id": dto.driver_id,
                "mode": request.mode.value,
                "offers_rejected": rejected,
            },
        )
        await self._broadcaster.withdraw(request.id)
        return Result.success(result)

    async def _accept_jit(
        self,
        request: RideRequest,
        driver_id: str,
        seats: int,
        price: float,
        conn: Connection,
    ) -> DispatchAcceptResult:
        ride = await self._rides.create(
            driver_id=driver_id,
            from_city=request.from_city,
            from_lat=request.from_lat,
            from_lng=request.from_lng,
            to_city=request.to_city,
            to_lat=request.to_lat,
            to_lng=request.to_lng,
            start_time=request.preferred_date,
            price_per_seat=price,
            seats_total=seats,
            seats_available=max(seats - request.seats_needed, 0),
            conn=conn,
        )
        booking = await self._bookings.create(
            ride_id=ride.id,
            passenger_id=request.passenger_id,
            seats_booked=request.seats_needed,
            status=BookingStatus.CONFIRMED,
            payment_status=BookingPaymentStatus.PAID,
            payment_intent_id=request.jit_payment_intent_id,
            pickup_name=request.from_city,
            pickup_lat=request.from_lat,
            pickup_lng=request.from_lng,
            dropoff_name=request.to_city,
            dropoff_lat=request.to_lat,
            dropoff_lng=request.to_lng,
            conn=conn,
        )

        if request.jit_payment_intent_id:
            amount_cents = request.jit_amount_cents
            if amount_cents is None:
                amount_cents = round_half_up(price * request.seats_needed * 100)
            await self._payments.upsert(
                booking_id=booking.id,
                payment_intent_id=request.jit_payment_intent_id,
                amount_cents=amount_cents,
                platform_fee_cents=platform_fee_cents(amount_cents, self._fee_pct),
                currency=request.jit_currency or self._currency,
                status=PaymentStatus.SUCCEEDED,
                conn=conn,
            )

        offer = await self._upsert_accepted_offer(
            request,
            driver_id,
            ride.id,
            seats,
            price,
            booking.id,
            conn,
        )
        return DispatchAcceptResult(
            ride_request_id=request.id,
            status=request.status,
            driver_id=request.driver_id,
            ride_request=request,
            ride=ride,
            booking=booking,
            offer=offer,
        )

    async def _upsert_accepted_offer(
        self,
        request: RideRequest,
        driver_id: str,
        ride_id: Optional[str],
        seats: int,
        price: float,
        booking_id: Optional[str],
        conn: Connection,
    ) -> RideRequestOffer:
        existing = await self._offers.find(request.id, driver_id, ride_id, conn=conn, for_update=True)
        if existing is not None:
            return await self._offers.update(
                existing.id,
                status=OfferStatus.ACCEPTED,
                seats_offered=seats,
                price_per_seat=price,
                ride_id=ride_id,
                booking_id=booking_id,
                conn=conn,
            )
        return await self._offers.create(
            ride_request_id=request.id,
            driver_id=driver_id,
            ride_id=ride_id,
            seats_offered=seats,
            price_per_seat=price,
            status=OfferStatus.ACCEPTED,
            booking_id=booking_id,
            conn=conn,
        )

    async def _existing_acceptance(self, request: RideRequest) -> Result[DispatchAcceptResult]:
        """Результат ранее выполненного принятия."""
        offer = await self._offers.get_accepted(request.id)
        booking = None
        ride = None
        if offer is not None and offer.booking_id:
            booking = await self._bookings.get_by_id(offer.booking_id)
        if offer is not None and offer.ride_id:
            ride = await self._rides.get_by_id(offer.ride_id)

        return Result.success(
            DispatchAcceptResult(
                idempotent=True,
                ride_request_id=request.id,
                status=RideRequestStatus.ACCEPTED,
                driver_id=request.driver_id,
                ride_request=request,
                ride=ride,
                booking=booking,
                offer=offer,
            ),
            idempotent=True,
        )
