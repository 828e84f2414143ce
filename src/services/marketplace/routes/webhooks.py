# src/services/marketplace/routes/webhooks.py
"""
Вебхук платёжного провайдера.

Подпись проверяется по сырому телу до разбора JSON.
"""

from __future__ import annotations

from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from src.common.errors import JitMetadataError, WebhookPayloadError, WebhookSignatureError
from src.common.logger import log_warning
from src.core.payments.reconciliation import PaymentReconciler
from src.infra.payment_gateway import PaymentGateway
from src.services.marketplace.dependencies import get_gateway, get_reconciler

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/payments")
async def payments_webhook(
    request: Request,
    gateway: Annotated[PaymentGateway, Depends(get_gateway)],
    reconciler: Annotated[PaymentReconciler, Depends(get_reconciler)],
    stripe_signature: Annotated[Optional[str], Header(alias="Stripe-Signature")] = None,
) -> dict[str, Any]:
    payload = await request.body()
    try:
        event = gateway.parse_webhook(payload, stripe_signature)
    except WebhookSignatureError as e:
        await log_warning(f"Вебхук отклонён: {e}", logger_name="webhooks")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Неверная подпись вебхука",
        ) from e

    try:
        outcome = await reconciler.handle_event(event)
    except WebhookPayloadError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except JitMetadataError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)) from e

    return {"received": True, "outcome": outcome.value}
