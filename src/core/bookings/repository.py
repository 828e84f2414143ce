# src/core/bookings/repository.py
"""
Репозиторий бронирований.
"""

from __future__ import annotations

from typing import Any, Optional

from asyncpg import Connection

from src.common.constants import (
    TERMINAL_BOOKING_STATUSES,
    BookingPaymentStatus,
    BookingStatus,
)
from src.core.bookings.models import Booking
from src.infra.database import DatabaseManager

_BOOKING_COLUMNS = """
    id, ride_id, passenger_id, seats_booked, status, payment_status, payment_intent_id,
    pickup_name, pickup_lat, pickup_lng, dropoff_name, dropoff_lat, dropoff_lng,
    created_at, updated_at
"""

_TERMINAL = [status.value for status in TERMINAL_BOOKING_STATUSES]


class BookingRepository:
    """Репозиторий бронирований."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def _executor(self, conn: Optional[Connection]) -> Any:
        return conn if conn is not None else self._db

    async def create(
        self,
        *,
        ride_id: str,
        passenger_id: str,
        seats_booked: int,
        status: BookingStatus = BookingStatus.PENDING,
        payment_status: BookingPaymentStatus = BookingPaymentStatus.UNPAID,
        payment_intent_id: str | None = None,
        pickup_name: str | None = None,
        pickup_lat: float | None = None,
        pickup_lng: float | None = None,
        dropoff_name: str | None = None,
        dropoff_lat: float | None = None,
        dropoff_lng: float | None = None,
        conn: Optional[Connection] = None,
    ) -> Booking:
        """Создаёт бронирование."""
        row = await self._executor(conn).fetchrow(
            f"""
            INSERT INTO bookings (
                ride_id, passenger_id, seats_booked, status, payment_status, payment_intent_id,
                pickup_name, pickup_lat, pickup_lng, dropoff_name, dropoff_lat, dropoff_lng
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            RETURNING {_BOOKING_COLUMNS}
            """,
            ride_id,
            passenger_id,
            seats_booked,
            status.value,
            payment_status.value,
            payment_intent_id,
            pickup_name,
            pickup_lat,
            pickup_lng,
            dropoff_name,
            dropoff_lat,
            dropoff_lng,
        )
        return Booking.model_validate(dict(row))

    async def get_by_id(
        self,
        booking_id: str,
        *,
        conn: Optional[Connection] = None,
        for_update: bool = False,
    ) -> Optional[Booking]:
        lock = " FOR UPDATE" if for_update and conn is not None else ""
        row = await self._executor(conn).fetchrow(
            f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE id = $1{lock}",
            booking_id,
        )
        return Booking.model_validate(dict(row)) if row else None

    async def transition(
        self,
        booking_id: str,
        from_statuses: tuple[BookingStatus, ...],
        to_status: BookingStatus,
        *,
        conn: Optional[Connection] = None,
    ) -> Optional[Booking]:
        """
        Меняет статус, если текущий входит в from_statuses.

        Returns:
            Обновлённое бронирование или None, если статус уже изменился
        """
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE bookings
            SET status = $2, updated_at = NOW()
            WHERE id = $1 AND status = ANY($3::text[])
            RETURNING {_BOOKING_COLUMNS}
            """,
            booking_id,
            to_status.value,
            [status.value for status in from_statuses],
        )
        return Booking.model_validate(dict(row)) if row else None

    async def update_payment_fields(
        self,
        booking_id: str,
        *,
        status: BookingStatus | None = None,
        payment_status: BookingPaymentStatus | None = None,
        payment_intent_id: str | None = None,
        conn: Optional[Connection] = None,
    ) -> Optional[Booking]:
        """Обновляет статус и поля оплаты; None-аргументы не меняются."""
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE bookings
            SET status = COALESCE($2, status),
                payment_status = COALESCE($3, payment_status),
                payment_intent_id = COALESCE($4, payment_intent_id),
                updated_at = NOW()
            WHERE id = $1
            RETURNING {_BOOKING_COLUMNS}
            """,
            booking_id,
            status.value if status else None,
            payment_status.value if payment_status else None,
            payment_intent_id,
        )
        return Booking.model_validate(dict(row)) if row else None

    async def list_active_by_ride(
        self,
        ride_id: str,
        *,
        conn: Optional[Connection] = None,
        for_update: bool = False,
    ) -> list[Booking]:
        """Нетерминальные бронирования поездки."""
        lock = " FOR UPDATE" if for_update and conn is not None else ""
        rows = await self._executor(conn).fetch(
            f"""
            SELECT {_BOOKING_COLUMNS}
            FROM bookings
            WHERE ride_id = $1 AND NOT (status = ANY($2::text[]))
            ORDER BY created_at{lock}
            """,
            ride_id,
            _TERMINAL,
        )
        return [Booking.model_validate(dict(row)) for row in rows]

    async def list_by_ride(self, ride_id: str) -> list[Booking]:
        rows = await self._db.fetch(
            f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE ride_id = $1 ORDER BY created_at DESC",
            ride_id,
        )
        return [Booking.model_validate(dict(row)) for row in rows]

    async def list_by_passenger(self, passenger_id: str, limit: int = 100) -> list[Booking]:
        rows = await self._db.fetch(
            f"""
            SELECT {_BOOKING_COLUMNS}
            FROM bookings
            WHERE passenger_id = $1
            ORDER BY created_at DESC
            LIMIT $2
            """,
            passenger_id,
            limit,
        )
        return [Booking.model_validate(dict(row)) for row in rows]
