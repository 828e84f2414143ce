# src/core/payments/models.py
"""
Модели платежей.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import PaymentStatus


class Payment(BaseModel):
    """Локальная запись платежа, уникальная по payment_intent_id."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_id: str
    payment_intent_id: str
    amount_cents: int
    platform_fee_cents: int = 0
    currency: str = "cad"
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def driver_earnings_cents(self) -> int:
        return self.amount_cents - self.platform_fee_cents


class PaymentIntentCreateDTO(BaseModel):
    """Тело запроса POST /payments/intent."""

    model_config = ConfigDict(extra="forbid")

    booking_id: str = Field(..., min_length=1)


class PaymentIntentResponse(BaseModel):
    """Ответ на создание (или повторное использование) намерения оплаты."""
    client_secret: Optional[str] = None
    payment_intent_id: str
    amount: int
    currency: str
    platform_fee_cents: int
    driver_earnings_cents: int


class PaymentIntentStatusResponse(BaseModel):
    """Состояние намерения у провайдера вместе с локальными статусами."""
    payment_intent_id: str
    client_secret: Optional[str] = None
    amount: int
    currency: str
    provider_status: str
    local_status: PaymentStatus
    platform_fee_cents: int
    driver_earnings_cents: int
    booking_id: str
    booking_status: str
    booking_payment_status: str
    ride_id: str


def map_intent_status(provider_status: str) -> PaymentStatus:
    """
    Переводит статус PaymentIntent в локальный статус платежа.

    succeeded -> succeeded, canceled -> failed, остальные -> pending.
    """
    if provider_status == "succeeded":
        return PaymentStatus.SUCCEEDED
    if provider_status == "canceled":
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING
