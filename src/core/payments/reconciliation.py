# src/core/payments/reconciliation.py
"""
Применение событий платёжного провайдера к локальным записям.

Провайдер доставляет события "как минимум один раз", поэтому каждое
событие применяется как свёртка: сначала вычисляется, что реально
изменится, и если ничего, событие считается дубликатом.
Завершённые бронирования не возвращаются к жизни поздними событиями.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError

from src.common.constants import (
    TERMINAL_BOOKING_STATUSES,
    BookingPaymentStatus,
    BookingStatus,
    PaymentStatus,
)
from src.common.errors import JitMetadataError, WebhookPayloadError
from src.common.logger import log_error, log_info, log_warning
from src.core.bookings.repository import BookingRepository
from src.core.payments.repository import PaymentRepository
from src.core.ride_requests.broadcast import RideRequestBroadcaster
from src.core.ride_requests.models import JIT_FLOW, JitRequestDraft
from src.core.ride_requests.repository import RideRequestRepository
from src.infra.database import DatabaseManager
from src.infra.event_bus import DomainEvent, EventBus, EventTypes


class ProviderEvent:
    """Типы событий провайдера, которые обрабатывает маркетплейс."""
    INTENT_SUCCEEDED = "payment_intent.succeeded"
    INTENT_FAILED = "payment_intent.payment_failed"
    CHARGE_REFUNDED = "charge.refunded"


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    UNKNOWN_PAYMENT = "unknown_payment"
    MATERIALIZED = "materialized"
    IGNORED = "ignored"


@dataclass(frozen=True)
class PaymentUpdatePlan:
    """
    Что нужно записать по событию.

    Attributes:
        duplicate: Все целевые значения уже установлены
        update_payment: Изменить статус платежа
        update_booking_payment: Изменить статус оплаты бронирования
        booking_status: Новый статус бронирования (None - не менять)
        skipped_terminal: Смена статуса отброшена, бронирование уже завершено
    """
    duplicate: bool
    update_payment: bool = False
    update_booking_payment: bool = False
    booking_status: Optional[BookingStatus] = None
    skipped_terminal: bool = False

    @property
    def writes_booking(self) -> bool:
        return self.update_booking_payment or self.booking_status is not None


def plan_payment_update(
    *,
    payment_status: PaymentStatus,
    booking_status: BookingStatus,
    booking_payment_status: BookingPaymentStatus,
    target_payment_status: PaymentStatus,
    target_booking_payment_status: BookingPaymentStatus,
    target_booking_status: Optional[BookingStatus] = None,
) -> PaymentUpdatePlan:
    """Сравнивает текущее состояние с целевым."""
    update_payment = payment_status != target_payment_status
    update_booking_payment = booking_payment_status != target_booking_payment_status
    wants_status = target_booking_status is not None and booking_status != target_booking_status

    if not (update_payment or update_booking_payment or wants_status):
        return PaymentUpdatePlan(duplicate=True)

    terminal = booking_status in TERMINAL_BOOKING_STATUSES
    return PaymentUpdatePlan(
        duplicate=False,
        update_payment=update_payment,
        update_booking_payment=update_booking_payment,
        booking_status=target_booking_status if wants_status and not terminal else None,
        skipped_terminal=wants_status and terminal,
    )


def _intent_id_from_charge(charge: dict[str, Any]) -> Optional[str]:
    intent = charge.get("payment_intent")
    if isinstance(intent, dict):
        return intent.get("id")
    return intent or None


class PaymentReconciler:
    """
    Обработчик событий провайдера.

    Ошибки БД пробрасываются: вебхук отвечает 500 и провайдер повторит доставку.
    """

    def __init__(
        self,
        db: DatabaseManager,
        broadcaster: RideRequestBroadcaster,
        event_bus: Optional[EventBus] = None,
        *,
        default_currency: str = "cad",
    ) -> None:
        self._db = db
        self._broadcaster = broadcaster
        self._event_bus = event_bus
        self._default_currency = default_currency
        self._payments = PaymentRepository(db)
        self._bookings = BookingRepository(db)
        self._requests = RideRequestRepository(db)

    async def handle_event(self, event: dict[str, Any]) -> ReconcileOutcome:
        """
        Применяет событие провайдера.

        Raises:
            WebhookPayloadError: В событии нет идентификатора намерения
            JitMetadataError: Метаданные оплаченной JIT-заявки некорректны
        """
        event_id = event.get("id")
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        await log_info(
            "Получено событие провайдера",
            logger_name="webhooks",
            extra={"event_id": event_id, "event_type": event_type},
        )

        if event_type == ProviderEvent.INTENT_SUCCEEDED:
            intent_id = obj.get("id")
            if not intent_id:
                raise WebhookPayloadError("Событие не содержит PaymentIntent")
            if (obj.get("metadata") or {}).get("flow") == JIT_FLOW:
                return await self._materialize_jit(event_id, obj)
            return await self._fold(
                event_id,
                intent_id,
                target_payment_status=PaymentStatus.SUCCEEDED,
                target_booking_payment_status=BookingPaymentStatus.PAID,
                target_booking_status=BookingStatus.CONFIRMED,
            )

        if event_type == ProviderEvent.INTENT_FAILED:
            intent_id = obj.get("id")
            if not intent_id:
                raise WebhookPayloadError("Событие не содержит PaymentIntent")
            return await self._fold(
                event_id,
                intent_id,
                target_payment_status=PaymentStatus.FAILED,
                target_booking_payment_status=BookingPaymentStatus.FAILED,
                target_booking_status=BookingStatus.ACCEPTED,
            )

        if event_type == ProviderEvent.CHARGE_REFUNDED:
            intent_id = _intent_id_from_charge(obj)
            if not intent_id:
                raise WebhookPayloadError("Возврат не связан с PaymentIntent")
            return await self._fold(
                event_id,
                intent_id,
                target_payment_status=PaymentStatus.REFUNDED,
                target_booking_payment_status=BookingPaymentStatus.REFUNDED,
            )

        return ReconcileOutcome.IGNORED

    # =========================================================================
    # СВЁРТКА СТАТУСОВ
    # =========================================================================

    async def _fold(
        self,
        event_id: Optional[str],
        intent_id: str,
        *,
        target_payment_status: PaymentStatus,
        target_booking_payment_status: BookingPaymentStatus,
        target_booking_status: Optional[BookingStatus] = None,
    ) -> ReconcileOutcome:
        log_extra = {"event_id": event_id, "payment_intent_id": intent_id}

        async with self._db.transaction() as conn:
            payment = await self._payments.get_by_intent_id(intent_id, conn=conn, for_update=True)
            booking = (
                await self._bookings.get_by_id(payment.booking_id, conn=conn, for_update=True)
                if payment is not None
                else None
            )
            if payment is None or booking is None:
                outcome = ReconcileOutcome.UNKNOWN_PAYMENT
            else:
                plan = plan_payment_update(
                    payment_status=payment.status,
                    booking_status=booking.status,
                    booking_payment_status=booking.payment_status,
                    target_payment_status=target_payment_status,
                    target_booking_payment_status=target_booking_payment_status,
                    target_booking_status=target_booking_status,
                )
                if plan.duplicate:
                    outcome = ReconcileOutcome.DUPLICATE
                else:
                    if plan.update_payment:
                        await self._payments.update_status(payment.id, target_payment_status, conn=conn)
                    if plan.writes_booking:
                        await self._bookings.update_payment_fields(
                            booking.id,
                            status=plan.booking_status,
                            payment_status=target_booking_payment_status,
                            conn=conn,
                        )
                    outcome = ReconcileOutcome.APPLIED

        if outcome == ReconcileOutcome.UNKNOWN_PAYMENT:
            await log_warning("Платёж для намерения не найден", logger_name="webhooks", extra=log_extra)
            return outcome

        if outcome == ReconcileOutcome.DUPLICATE:
            await log_info(
                "Повторное событие статуса платежа пропущено",
                logger_name="webhooks",
                extra={**log_extra, "status": target_payment_status.value},
            )
            return outcome

        if plan.skipped_terminal:
            await log_info(
                "Смена статуса завершённого бронирования пропущена",
                logger_name="webhooks",
                extra={
                    **log_extra,
                    "booking_id": booking.id,
                    "booking_status_current": booking.status.value,
                    "booking_status_requested": target_booking_status.value,
                },
            )

        await log_info(
            "Статус платежа обновлён",
            logger_name="webhooks",
            extra={
                **log_extra,
                "payment_status_from": payment.status.value,
                "payment_status_to": target_payment_status.value,
                "booking_status_from": booking.status.value,
                "booking_status_to": (plan.booking_status or booking.status).value,
                "booking_payment_status_from": booking.payment_status.value,
                "booking_payment_status_to": target_booking_payment_status.value,
            },
        )
        await self._publish_payment_event(target_payment_status, booking.id, intent_id)
        return outcome

    async def _publish_payment_event(
        self,
        status: PaymentStatus,
        booking_id: str,
        intent_id: str,
    ) -> None:
        event_type = {
            PaymentStatus.SUCCEEDED: EventTypes.PAYMENT_SUCCEEDED,
            PaymentStatus.REFUNDED: EventTypes.PAYMENT_REFUNDED,
        }.get(status)
        if event_type is None or self._event_bus is None:
            return
        await self._event_bus.publish(DomainEvent(
            event_type=event_type,
            payload={"booking_id": booking_id, "payment_intent_id": intent_id},
        ))

    # =========================================================================
    # JIT-ЗАЯВКИ
    # =========================================================================

    async def _materialize_jit(self, event_id: Optional[str], intent: dict[str, Any]) -> ReconcileOutcome:
        """Создаёт заявку из метаданных оплаченного намерения (один раз на намерение)."""
        intent_id = intent["id"]
        try:
            draft = JitRequestDraft.model_validate(intent.get("metadata") or {})
        except ValidationError as e:
            await log_error(
                "Некорректные метаданные оплаченной JIT-заявки",
                logger_name="webhooks",
                extra={"event_id": event_id, "payment_intent_id": intent_id, "errors": e.errors()},
            )
            raise JitMetadataError(f"Некорректные метаданные JIT-заявки {intent_id}") from e

        amount = intent.get("amount_received") or intent.get("amount")
        if not amount:
            await log_error(
                "Оплаченное JIT-намерение без суммы",
                logger_name="webhooks",
                extra={"event_id": event_id, "payment_intent_id": intent_id},
            )
            raise JitMetadataError(f"JIT-намерение {intent_id} не содержит сумму")

        created = await self._requests.create_jit(
            draft,
            payment_intent_id=intent_id,
            amount_cents=int(amount),
            currency=intent.get("currency") or self._default_currency,
        )
        if created is None:
            await log_info(
                "JIT-заявка для намерения уже создана",
                logger_name="webhooks",
                extra={"event_id": event_id, "payment_intent_id": intent_id},
            )
            return ReconcileOutcome.DUPLICATE

        await log_info(
            "Создана оплаченная JIT-заявка",
            logger_name="webhooks",
            extra={
                "event_id": event_id,
                "payment_intent_id": intent_id,
                "ride_request_id": created.id,
                "passenger_id": created.passenger_id,
            },
        )
        await self._broadcaster.announce(created)
        return ReconcileOutcome.MATERIALIZED
