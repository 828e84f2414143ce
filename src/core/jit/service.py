# src/core/jit/service.py
"""
Создание PaymentIntent для JIT-заявки.

Заявка не создаётся здесь: параметры поездки уходят в метаданные
намерения, а сама заявка появляется в обработчике вебхука после оплаты.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Optional

from src.common.errors import ErrorKind, PaymentProviderError, Result
from src.common.logger import log_error, log_info
from src.config.loader import PricingSettings
from src.core.pricing.money import round_half_up
from src.core.pricing.resolver import SeatPriceResolver, hours_until
from src.core.ride_requests.models import JitIntentCreateDTO, JitIntentResponse, jit_metadata
from src.infra.payment_gateway import PaymentGateway


def jit_intent_key(passenger_id: str, amount_cents: int, currency: str, metadata: dict[str, str]) -> str:
    """
    Детерминированный ключ идемпотентности.

    Одинаковые параметры поездки дают тот же ключ, и провайдер
    возвращает уже созданное намерение.
    """
    digest = hashlib.sha256(
        json.dumps(
            {"amountCents": amount_cents, "currency": currency, "metadata": metadata},
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")
    ).hexdigest()
    return f"jit:{passenger_id}:{digest}"


class JitIntentService:
    """Расчёт цены и создание намерения для ближайших поездок."""

    def __init__(
        self,
        gateway: PaymentGateway,
        resolver: SeatPriceResolver,
        rules: PricingSettings,
        *,
        currency: str,
    ) -> None:
        self._gateway = gateway
        self._resolver = resolver
        self._rules = rules
        self._currency = currency

    async def create_intent(
        self,
        passenger_id: str,
        dto: JitIntentCreateDTO,
        *,
        now: Optional[datetime] = None,
    ) -> Result[JitIntentResponse]:
        """
        Создаёт намерение оплаты для поездки в пределах JIT-окна.

        Сумма = цена за место (через резолвер) × места, в центах.
        """
        now = now or datetime.now(timezone.utc)
        hours = hours_until(dto.preferred_date, now)
        if hours < 0:
            return Result.fail(ErrorKind.VALIDATION, "Дата поездки должна быть в будущем")
        if hours > self._rules.JIT_WINDOW_HOURS:
            return Result.fail(
                ErrorKind.VALIDATION,
                f"JIT-оплата доступна только для отправления в ближайшие {self._rules.JIT_WINDOW_HOURS:g} ч",
            )

        base_price = dto.base_price_per_seat or self._rules.JIT_BASE_PRICE_PER_SEAT
        pricing = await self._resolver.resolve(
            from_city=dto.from_city,
            to_city=dto.to_city,
            from_lat=dto.from_lat,
            from_lng=dto.from_lng,
            to_lat=dto.to_lat,
            to_lng=dto.to_lng,
            seats=dto.seats_needed,
            base_price_per_seat=base_price,
            departure_time=dto.preferred_date,
            booked_at=now,
        )

        amount_cents = round_half_up(pricing.price_per_seat * dto.seats_needed * 100)
        if amount_cents <= 0:
            return Result.fail(ErrorKind.VALIDATION, "Некорректная сумма JIT-оплаты")

        metadata = jit_metadata(dto, passenger_id, pricing.price_per_seat)
        try:
            intent = await self._gateway.create_intent(
                amount_cents=amount_cents,
                currency=self._currency,
                metadata=metadata,
                idempotency_key=jit_intent_key(passenger_id, amount_cents, self._currency, metadata),
            )
        except PaymentProviderError as e:
            await log_error(
                f"Не удалось создать JIT-намерение: {e}",
                logger_name="jit",
                extra={"passenger_id": passenger_id, "amount_cents": amount_cents},
            )
            return Result.fail(ErrorKind.UPSTREAM, "Платёжный провайдер недоступен")

        if not intent.client_secret:
            return Result.fail(ErrorKind.INTERNAL, "Намерение оплаты создано без client_secret")

        await log_info(
            "Создано JIT-намерение",
            logger_name="jit",
            extra={
                "passenger_id": passenger_id,
                "payment_intent_id": intent.id,
                "amount_cents": intent.amount,
                "price_per_seat": pricing.price_per_seat,
            },
        )
        return Result.success(JitIntentResponse(
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            amount=intent.amount,
            currency=intent.currency,
            quoted_price_per_seat=pricing.price_per_seat,
        ))
