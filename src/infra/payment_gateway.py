# src/infra/payment_gateway.py
"""
Шлюз к платёжному провайдеру (Stripe).

Оборачивает асинхронный StripeClient: создание и чтение PaymentIntent,
возвраты и проверку подписи вебхуков. Наружу отдаются простые dataclass,
ошибки провайдера превращаются в PaymentProviderError.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import stripe

from src.common.errors import PaymentProviderError, WebhookSignatureError
from src.common.logger import get_logger, log_info

logger = get_logger("payments")


@dataclass(frozen=True)
class IntentInfo:
    """Снимок PaymentIntent у провайдера."""
    id: str
    status: str
    amount: int
    currency: str
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RefundInfo:
    """Результат создания возврата."""
    id: str
    status: str | None


def _to_intent_info(intent: Any) -> IntentInfo:
    metadata = getattr(intent, "metadata", None) or {}
    return IntentInfo(
        id=intent.id,
        status=intent.status,
        amount=int(intent.amount),
        currency=intent.currency,
        client_secret=getattr(intent, "client_secret", None),
        metadata={str(k): str(v) for k, v in dict(metadata).items()},
    )


def _wrap_error(e: stripe.StripeError) -> PaymentProviderError:
    return PaymentProviderError(
        getattr(e, "user_message", None) or str(e),
        code=getattr(e, "code", None),
        invalid_request=isinstance(e, stripe.InvalidRequestError),
    )


class PaymentGateway:
    """
    Клиент платёжного провайдера.

    Все сетевые вызовы асинхронные; ключ идемпотентности передаётся
    провайдеру как есть, поэтому повтор запроса не создаёт второй платёж.
    """

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        *,
        webhook_tolerance: int = 300,
        client: stripe.StripeClient | None = None,
    ) -> None:
        self._webhook_secret = webhook_secret
        self._webhook_tolerance = webhook_tolerance
        self._client = client or stripe.StripeClient(
            secret_key,
            http_client=stripe.HTTPXClient(),
        )

    async def create_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> IntentInfo:
        """
        Создаёт PaymentIntent с автоматическими способами оплаты.

        Args:
            amount_cents: Сумма в минимальных единицах валюты
            currency: Код валюты (нижний регистр)
            metadata: Строковые метаданные (переносятся в вебхук)
            idempotency_key: Ключ идемпотентности провайдера

        Raises:
            PaymentProviderError: Провайдер вернул ошибку
        """
        try:
            intent = await self._client.payment_intents.create_async(
                params={
                    "amount": amount_cents,
                    "currency": currency,
                    "automatic_payment_methods": {"enabled": True},
                    "metadata": metadata,
                },
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            raise _wrap_error(e) from e

        await log_info(
            "Создан PaymentIntent",
            logger_name="payments",
            extra={"payment_intent_id": intent.id, "amount_cents": amount_cents},
        )
        return _to_intent_info(intent)

    async def retrieve_intent(self, intent_id: str) -> IntentInfo:
        """Читает PaymentIntent у провайдера."""
        try:
            intent = await self._client.payment_intents.retrieve_async(intent_id)
        except stripe.StripeError as e:
            raise _wrap_error(e) from e
        return _to_intent_info(intent)

    async def create_refund(
        self,
        *,
        payment_intent_id: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> RefundInfo:
        """
        Создаёт полный возврат по PaymentIntent.

        Raises:
            PaymentProviderError: Провайдер вернул ошибку
                (already_refunded=True, если возврат уже был)
        """
        try:
            refund = await self._client.refunds.create_async(
                params={
                    "payment_intent": payment_intent_id,
                    "reason": "requested_by_customer",
                    "metadata": metadata,
                },
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            raise _wrap_error(e) from e
        return RefundInfo(id=refund.id, status=getattr(refund, "status", None))

    def parse_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """
        Проверяет подпись вебхука по сырому телу и только затем парсит JSON.

        Args:
            payload: Сырое тело запроса
            signature: Значение заголовка Stripe-Signature

        Returns:
            Событие провайдера в виде словаря

        Raises:
            WebhookSignatureError: Подпись отсутствует или неверна
        """
        if not signature or not self._webhook_secret:
            raise WebhookSignatureError("Отсутствует подпись вебхука или секрет")

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self._webhook_secret,
                self._webhook_tolerance,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            raise WebhookSignatureError(str(e)) from e

        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            raise WebhookSignatureError(f"Некорректное тело вебхука: {e}") from e


def create_payment_gateway() -> PaymentGateway:
    """Создаёт шлюз по настройкам."""
    from src.config import settings

    return PaymentGateway(
        settings.stripe.STRIPE_SECRET_KEY,
        settings.stripe.STRIPE_WEBHOOK_SECRET,
        webhook_tolerance=settings.stripe.STRIPE_WEBHOOK_TOLERANCE,
    )
