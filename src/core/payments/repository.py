# src/core/payments/repository.py
"""
Репозиторий платежей.
"""

from __future__ import annotations

from typing import Any, Optional

from asyncpg import Connection

from src.common.constants import PaymentStatus
from src.core.payments.models import Payment
from src.infra.database import DatabaseManager

_PAYMENT_COLUMNS = """
    id, booking_id, payment_intent_id, amount_cents, platform_fee_cents,
    currency, status, created_at, updated_at
"""


class PaymentRepository:
    """Репозиторий платежей."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def _executor(self, conn: Optional[Connection]) -> Any:
        return conn if conn is not None else self._db

    async def upsert(
        self,
        *,
        booking_id: str,
        payment_intent_id: str,
        amount_cents: int,
        platform_fee_cents: int,
        currency: str,
        status: PaymentStatus,
        conn: Optional[Connection] = None,
    ) -> Payment:
        """
        Создаёт или обновляет платёж по payment_intent_id.

        Повторная доставка того же намерения обновляет строку,
        а не создаёт дубликат.
        """
        row = await self._executor(conn).fetchrow(
            f"""
            INSERT INTO payments (
                booking_id, payment_intent_id, amount_cents, platform_fee_cents, currency, status
            )
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (payment_intent_id) DO UPDATE SET
                booking_id = EXCLUDED.booking_id,
                amount_cents = EXCLUDED.amount_cents,
                platform_fee_cents = EXCLUDED.platform_fee_cents,
                currency = EXCLUDED.currency,
                status = EXCLUDED.status,
                updated_at = NOW()
            RETURNING {_PAYMENT_COLUMNS}
            """,
            booking_id,
            payment_intent_id,
            amount_cents,
            platform_fee_cents,
            currency,
            status.value,
        )
        return Payment.model_validate(dict(row))

    async def get_by_intent_id(
        self,
        payment_intent_id: str,
        *,
        conn: Optional[Connection] = None,
        for_update: bool = False,
    ) -> Optional[Payment]:
        lock = " FOR UPDATE" if for_update and conn is not None else ""
        row = await self._executor(conn).fetchrow(
            f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE payment_intent_id = $1{lock}",
            payment_intent_id,
        )
        return Payment.model_validate(dict(row)) if row else None

    async def update_status(
        self,
        payment_id: str,
        status: PaymentStatus,
        *,
        conn: Optional[Connection] = None,
    ) -> None:
        await self._executor(conn).execute(
            "UPDATE payments SET status = $2, updated_at = NOW() WHERE id = $1",
            payment_id,
            status.value,
        )
