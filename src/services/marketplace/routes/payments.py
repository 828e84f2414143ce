# src/services/marketplace/routes/payments.py
"""
Маршруты оплаты бронирований.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from src.core.payments.models import (
    PaymentIntentCreateDTO,
    PaymentIntentResponse,
    PaymentIntentStatusResponse,
)
from src.core.payments.service import PaymentService
from src.services.marketplace.auth import CurrentUser
from src.services.marketplace.dependencies import get_payment_service
from src.services.marketplace.errors import unwrap

router = APIRouter(prefix="/payments", tags=["Payments"])

PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]


@router.post("/intent", response_model=PaymentIntentResponse)
async def create_payment_intent(
    dto: PaymentIntentCreateDTO,
    user_id: CurrentUser,
    service: PaymentServiceDep,
) -> PaymentIntentResponse:
    """Создание или повторное использование PaymentIntent бронирования."""
    return unwrap(await service.create_intent(user_id, dto.booking_id))


@router.get("/intent/{payment_intent_id}", response_model=PaymentIntentStatusResponse)
async def get_payment_intent(
    payment_intent_id: str,
    user_id: CurrentUser,
    service: PaymentServiceDep,
) -> PaymentIntentStatusResponse:
    return unwrap(await service.get_intent(user_id, payment_intent_id))
