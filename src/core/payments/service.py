# src/core/payments/service.py
"""
Сервис оплаты бронирований.
Создание и повторное использование PaymentIntent, чтение статуса.
"""

from __future__ import annotations

from src.common.constants import BookingPaymentStatus, BookingStatus
from src.common.errors import ErrorKind, PaymentProviderError, Result, RollbackSignal
from src.common.logger import log_info, log_warning
from src.config.loader import PricingSettings
from src.core.bookings.models import Booking
from src.core.bookings.repository import BookingRepository
from src.core.bookings.state_machine import BookingStateMachine
from src.core.payments.models import (
    PaymentIntentResponse,
    PaymentIntentStatusResponse,
    map_intent_status,
)
from src.core.payments.repository import PaymentRepository
from src.core.pricing.fare import calculate_booking_fare, platform_fee_cents
from src.core.rides.repository import RideRepository
from src.infra.database import DatabaseManager
from src.infra.payment_gateway import IntentInfo, PaymentGateway

# Бронирование можно оплачивать, пока из него разрешён переход в CONFIRMED
_PAYABLE_STATUSES = BookingStateMachine.sources_for(BookingStatus.CONFIRMED)


def booking_intent_key(booking_id: str) -> str:
    return f"booking:{booking_id}:intent"


class PaymentService:
    """
    Сервис платежей по бронированиям.
    """

    def __init__(
        self,
        db: DatabaseManager,
        gateway: PaymentGateway,
        rules: PricingSettings,
        *,
        platform_fee_pct: float,
        currency: str,
    ) -> None:
        self._db = db
        self._gateway = gateway
        self._rules = rules
        self._fee_pct = platform_fee_pct
        self._currency = currency
        self._payments = PaymentRepository(db)
        self._bookings = BookingRepository(db)
        self._rides = RideRepository(db)

    # =========================================================================
    # СОЗДАНИЕ НАМЕРЕНИЯ
    # =========================================================================

    async def create_intent(self, user_id: str, booking_id: str) -> Result[PaymentIntentResponse]:
        """
        Создаёт PaymentIntent для принятого бронирования.

        Существующее неотменённое намерение используется повторно.
        Новое создаётся с ключом идемпотентности booking:<id>:intent.
        """
        booking = await self._bookings.get_by_id(booking_id)
        if booking is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Бронирование не найдено")

        if booking.passenger_id != user_id:
            return Result.fail(ErrorKind.FORBIDDEN, "Можно оплатить только своё бронирование")

        if booking.is_paid:
            return Result.fail(
                ErrorKind.CONFLICT,
                "Бронирование уже оплачено",
                payment_intent_id=booking.payment_intent_id,
            )

        if booking.status not in _PAYABLE_STATUSES:
            return Result.fail(
                ErrorKind.INVALID_STATE,
                "Оплата возможна только для принятого бронирования",
                status=booking.status.value,
            )

        ride = await self._rides.get_by_id(booking.ride_id)
        if ride is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Поездка не найдена")

        fare = calculate_booking_fare(
            from_lat=ride.from_lat,
            from_lng=ride.from_lng,
            to_lat=ride.to_lat,
            to_lng=ride.to_lng,
            price_per_seat=ride.price_per_seat,
            seats_booked=booking.seats_booked,
            rules=self._rules,
        )
        if fare.fare_cents <= 0:
            return Result.fail(ErrorKind.VALIDATION, "Некорректная сумма оплаты")

        fee_cents = platform_fee_cents(fare.fare_cents, self._fee_pct)
        if fee_cents < 0 or fee_cents > fare.fare_cents:
            return Result.fail(ErrorKind.VALIDATION, "Некорректная комиссия платформы")

        if booking.payment_intent_id:
            reused = await self._try_reuse_intent(booking, fare.fare_cents)
            if reused is not None:
                return reused

        metadata = {
            "bookingId": booking.id,
            "passengerId": booking.passenger_id,
            "driverId": ride.driver_id,
            **fare.as_metadata(),
            "platformFeeCents": str(fee_cents),
            "driverEarningsCents": str(fare.fare_cents - fee_cents),
        }
        try:
            intent = await self._gateway.create_intent(
                amount_cents=fare.fare_cents,
                currency=self._currency,
                metadata=metadata,
                idempotency_key=booking_intent_key(booking.id),
            )
        except PaymentProviderError as e:
            return Result.fail(ErrorKind.UPSTREAM, f"Платёжный провайдер недоступен: {e}")

        if not intent.client_secret:
            return Result.fail(ErrorKind.INTERNAL, "Намерение оплаты не содержит client_secret")

        failure = await self._persist_intent(booking.id, intent, fee_cents, mark_pending=True)
        if failure is not None:
            return failure

        await log_info(
            "Создано намерение оплаты",
            logger_name="payments",
            extra={
                "booking_id": booking.id,
                "payment_intent_id": intent.id,
                "amount_cents": intent.amount,
            },
        )
        return Result.success(PaymentIntentResponse(
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            amount=intent.amount,
            currency=intent.currency,
            platform_fee_cents=fee_cents,
            driver_earnings_cents=fare.fare_cents - fee_cents,
        ))

    async def _try_reuse_intent(
        self,
        booking: Booking,
        fallback_amount_cents: int,
    ) -> Result[PaymentIntentResponse] | None:
        """Возвращает результат по существующему намерению или None, если нужно новое."""
        try:
            intent = await self._gateway.retrieve_intent(booking.payment_intent_id)
        except PaymentProviderError as e:
            await log_warning(
                f"Существующее намерение нельзя использовать, создаём новое: {e}",
                logger_name="payments",
                extra={"booking_id": booking.id, "payment_intent_id": booking.payment_intent_id},
            )
            return None

        if intent.status == "canceled":
            return None

        amount_cents = intent.amount or fallback_amount_cents
        fee_cents = platform_fee_cents(amount_cents, self._fee_pct)

        failure = await self._persist_intent(
            booking.id,
            intent,
            fee_cents,
            mark_pending=intent.status != "succeeded",
            fallback_amount_cents=fallback_amount_cents,
        )
        if failure is not None:
            return failure

        await log_info(
            "Повторно используется намерение оплаты",
            logger_name="payments",
            extra={
                "booking_id": booking.id,
                "payment_intent_id": intent.id,
                "provider_status": intent.status,
            },
        )
        return Result.success(PaymentIntentResponse(
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            amount=amount_cents,
            currency=intent.currency or self._currency,
            platform_fee_cents=fee_cents,
            driver_earnings_cents=amount_cents - fee_cents,
        ))

    async def _persist_intent(
        self,
        booking_id: str,
        intent: IntentInfo,
        fee_cents: int,
        *,
        mark_pending: bool,
        fallback_amount_cents: int = 0,
    ) -> Result[PaymentIntentResponse] | None:
        """Сохраняет платёж и переводит бронирование в ожидание оплаты."""
        try:
            async with self._db.transaction() as conn:
                current = await self._bookings.get_by_id(booking_id, conn=conn, for_update=True)
                if current is None or current.status not in _PAYABLE_STATUSES:
                    raise RollbackSignal(
                        ErrorKind.INVALID_STATE,
                        "Бронирование больше не ожидает оплаты",
                        status=current.status.value if current else None,
                    )

                await self._payments.upsert(
                    booking_id=booking_id,
                    payment_intent_id=intent.id,
                    amount_cents=intent.amount or fallback_amount_cents,
                    platform_fee_cents=fee_cents,
                    currency=intent.currency or self._currency,
                    status=map_intent_status(intent.status),
                    conn=conn,
                )
                if mark_pending:
                    await self._bookings.update_payment_fields(
                        booking_id,
                        status=BookingStatus.PAYMENT_PENDING,
                        payment_status=BookingPaymentStatus.PENDING,
                        payment_intent_id=intent.id,
                        conn=conn,
                    )
        except RollbackSignal as signal:
            return Result.from_failure(signal.failure)
        return None

    # =========================================================================
    # СТАТУС НАМЕРЕНИЯ
    # =========================================================================

    async def get_intent(
        self,
        user_id: str,
        payment_intent_id: str,
    ) -> Result[PaymentIntentStatusResponse]:
        """Статус намерения для пассажира или водителя бронирования."""
        payment = await self._payments.get_by_intent_id(payment_intent_id)
        if payment is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Намерение оплаты не найдено")

        booking = await self._bookings.get_by_id(payment.booking_id)
        ride = await self._rides.get_by_id(booking.ride_id) if booking else None
        if booking is None or ride is None:
            return Result.fail(ErrorKind.NOT_FOUND, "Бронирование платежа не найдено")

        if user_id not in (booking.passenger_id, ride.driver_id):
            return Result.fail(ErrorKind.FORBIDDEN, "Нет доступа к этому платежу")

        try:
            intent = await self._gateway.retrieve_intent(payment_intent_id)
        except PaymentProviderError as e:
            if e.invalid_request:
                return Result.fail(ErrorKind.NOT_FOUND, "Намерение оплаты не найдено у провайдера")
            return Result.fail(ErrorKind.UPSTREAM, f"Платёжный провайдер недоступен: {e}")

        return Result.success(PaymentIntentStatusResponse(
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            amount=intent.amount or payment.amount_cents,
            currency=intent.currency or payment.currency,
            provider_status=intent.status,
            local_status=payment.status,
            platform_fee_cents=payment.platform_fee_cents,
            driver_earnings_cents=payment.driver_earnings_cents,
            booking_id=booking.id,
            booking_status=booking.status.value,
            booking_payment_status=booking.payment_status.value,
            ride_id=ride.id,
        ))
