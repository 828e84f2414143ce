# src/core/payments/refunds.py
"""
Инициирование возвратов при отменах.

Возврат идемпотентен: ключ провайдера строится из сущности, её ID и
источника отмены, поэтому повтор отмены не создаёт второй возврат.
Ответ провайдера "уже возвращено" считается успехом.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from src.common.constants import (
    PAID_BOOKING_PAYMENT_STATUSES,
    BookingPaymentStatus,
    PaymentStatus,
    RefundSource,
)
from src.common.errors import PaymentProviderError
from src.common.logger import log_info
from src.core.bookings.models import Booking
from src.core.payments.repository import PaymentRepository
from src.infra.payment_gateway import PaymentGateway


class RefundReason:
    REFUND_INITIATED = "refund_initiated"
    ALREADY_REFUNDED = "already_refunded"
    NOT_PAID = "not_paid"


@dataclass(frozen=True)
class RefundOutcome:
    """Итог попытки возврата."""
    refunded: bool
    reason: str
    refund_id: Optional[str] = None


def booking_refund_key(booking_id: str, source: RefundSource) -> str:
    return f"booking:{booking_id}:refund:{source.value}"


def ride_request_refund_key(ride_request_id: str, source: RefundSource) -> str:
    return f"ride_request:{ride_request_id}:refund:{source.value}"


class RefundService:
    """Возвраты по бронированиям и JIT-заявкам."""

    def __init__(self, gateway: PaymentGateway, payments: PaymentRepository) -> None:
        self._gateway = gateway
        self._payments = payments

    async def refund_booking_if_paid(
        self,
        booking: Booking,
        source: RefundSource,
    ) -> RefundOutcome:
        """
        Возвращает оплату бронирования, если оно оплачено.

        Raises:
            PaymentProviderError: Провайдер отказал или у оплаченного
                бронирования нет payment_intent_id
        """
        if booking.payment_status == BookingPaymentStatus.REFUNDED:
            return RefundOutcome(refunded=False, reason=RefundReason.ALREADY_REFUNDED)

        if booking.payment_status.value not in PAID_BOOKING_PAYMENT_STATUSES:
            return RefundOutcome(refunded=False, reason=RefundReason.NOT_PAID)

        if not booking.payment_intent_id:
            raise PaymentProviderError(
                f"Бронирование {booking.id} оплачено, но не содержит payment_intent_id"
            )

        return await self._refund(
            payment_intent_id=booking.payment_intent_id,
            idempotency_key=booking_refund_key(booking.id, source),
            metadata={"bookingId": booking.id, "source": source.value},
            log_extra={"booking_id": booking.id, "source": source.value},
        )

    async def refund_ride_request(
        self,
        ride_request_id: str,
        payment_intent_id: Optional[str],
        source: RefundSource,
    ) -> RefundOutcome:
        """Возвращает предоплату JIT-заявки."""
        if not payment_intent_id:
            return RefundOutcome(refunded=False, reason=RefundReason.NOT_PAID)

        return await self._refund(
            payment_intent_id=payment_intent_id,
            idempotency_key=ride_request_refund_key(ride_request_id, source),
            metadata={"rideRequestId": ride_request_id, "source": source.value},
            log_extra={"ride_request_id": ride_request_id, "source": source.value},
        )

    async def _refund(
        self,
        *,
        payment_intent_id: str,
        idempotency_key: str,
        metadata: dict[str, str],
        log_extra: dict[str, str],
    ) -> RefundOutcome:
        payment = await self._payments.get_by_intent_id(payment_intent_id)
        if payment is not None and payment.status == PaymentStatus.REFUNDED:
            return RefundOutcome(refunded=False, reason=RefundReason.ALREADY_REFUNDED)

        try:
            refund = await self._gateway.create_refund(
                payment_intent_id=payment_intent_id,
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
        except PaymentProviderError as e:
            if not e.already_refunded:
                raise
            await log_info(
                "Возврат уже выполнен ранее",
                logger_name="payments",
                extra={**log_extra, "payment_intent_id": payment_intent_id},
            )
            return RefundOutcome(refunded=False, reason=RefundReason.ALREADY_REFUNDED)

        await log_info(
            "Инициирован возврат",
            logger_name="payments",
            extra={
                **log_extra,
                "payment_intent_id": payment_intent_id,
                "refund_id": refund.id,
                "refund_status": refund.status,
            },
        )
        return RefundOutcome(
            refunded=True,
            reason=RefundReason.REFUND_INITIATED,
            refund_id=refund.id,
        )
