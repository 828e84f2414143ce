# src/core/ride_requests/repository.py
"""
Репозитории заявок и предложений.
"""

from __future__ import annotations

from typing import Any, Optional

from asyncpg import Connection

from src.common.constants import (
    ACTIVE_RIDE_REQUEST_STATUSES,
    OfferStatus,
    RideRequestMode,
    RideRequestStatus,
)
from src.core.ride_requests.models import (
    JitRequestDraft,
    RideRequest,
    RideRequestCreateDTO,
    RideRequestOffer,
)
from src.infra.database import DatabaseManager

_REQUEST_COLUMNS = """
    id, passenger_id, driver_id, mode, status,
    from_city, from_lat, from_lng, to_city, to_lat, to_lng,
    preferred_date, preferred_time, arrival_time, seats_needed, ride_type, trip_type,
    return_date, return_time,
    jit_payment_intent_id, jit_amount_cents, jit_currency, quoted_price_per_seat,
    created_at, updated_at
"""

_REQUEST_UPDATABLE = frozenset({
    "from_city", "from_lat", "from_lng", "to_city", "to_lat", "to_lng",
    "preferred_date", "preferred_time", "arrival_time", "seats_needed",
    "ride_type", "trip_type", "return_date", "return_time",
})

_OFFER_COLUMNS = """
    id, ride_request_id, driver_id, ride_id, booking_id, seats_offered, price_per_seat,
    status, created_at, updated_at
"""

_ACTIVE = [status.value for status in ACTIVE_RIDE_REQUEST_STATUSES]

# Верхняя граница кандидатов поиска до фильтра по радиусу
SEARCH_SCAN_LIMIT = 1000


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _affected_rows(command_status: str) -> int:
    """Число строк из статуса команды asyncpg ("UPDATE 3")."""
    try:
        return int(command_status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class RideRequestRepository:
    """Репозиторий заявок пассажиров."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def _executor(self, conn: Optional[Connection]) -> Any:
        return conn if conn is not None else self._db

    async def create(
        self,
        passenger_id: str,
        dto: RideRequestCreateDTO,
        *,
        status: RideRequestStatus = RideRequestStatus.PENDING,
        conn: Optional[Connection] = None,
    ) -> RideRequest:
        """Создаёт заявку в режиме предложений."""
        row = await self._executor(conn).fetchrow(
            f"""
            INSERT INTO ride_requests (
                passenger_id, mode, status,
                from_city, from_lat, from_lng, to_city, to_lat, to_lng,
                preferred_date, preferred_time, arrival_time, seats_needed,
                ride_type, trip_type, return_date, return_time
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
            RETURNING {_REQUEST_COLUMNS}
            """,
            passenger_id,
            RideRequestMode.OFFER.value,
            status.value,
            dto.from_city,
            dto.from_lat,
            dto.from_lng,
            dto.to_city,
            dto.to_lat,
            dto.to_lng,
            dto.preferred_date,
            dto.preferred_time,
            dto.arrival_time,
            dto.seats_needed,
            dto.ride_type,
            dto.trip_type,
            dto.return_date,
            dto.return_time,
        )
        return RideRequest.model_validate(dict(row))

    async def create_jit(
        self,
        draft: JitRequestDraft,
        *,
        payment_intent_id: str,
        amount_cents: int,
        currency: str,
        conn: Optional[Connection] = None,
    ) -> Optional[RideRequest]:
        """
        Создаёт JIT-заявку по оплаченному намерению.

        Returns:
            Новая заявка или None, если заявка для этого намерения уже есть
        """
        row = await self._executor(conn).fetchrow(
            f"""
            INSERT INTO ride_requests (
                passenger_id, mode, status,
                from_city, from_lat, from_lng, to_city, to_lat, to_lng,
                preferred_date, preferred_time, arrival_time, seats_needed,
                ride_type, trip_type, return_date, return_time,
                jit_payment_intent_id, jit_amount_cents, jit_currency, quoted_price_per_seat
            )
            VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11,
                $12, $13, $14, $15, $16, $17, $18, $19, $20, $21
            )
            ON CONFLICT (jit_payment_intent_id) DO NOTHING
            RETURNING {_REQUEST_COLUMNS}
            """,
            draft.passenger_id,
            RideRequestMode.JIT.value,
            RideRequestStatus.PENDING.value,
            draft.from_city,
            draft.from_lat,
            draft.from_lng,
            draft.to_city,
            draft.to_lat,
            draft.to_lng,
            draft.preferred_date,
            draft.preferred_time,
            draft.arrival_time,
            draft.seats_needed,
            draft.ride_type,
            draft.trip_type,
            draft.return_date,
            draft.return_time,
            payment_intent_id,
            amount_cents,
            currency,
            draft.quoted_price_per_seat,
        )
        return RideRequest.model_validate(dict(row)) if row else None

    async def get_by_id(
        self,
        ride_request_id: str,
        *,
        conn: Optional[Connection] = None,
        for_update: bool = False,
    ) -> Optional[RideRequest]:
        lock = " FOR UPDATE" if for_update and conn is not None else ""
        row = await self._executor(conn).fetchrow(
            f"SELECT {_REQUEST_COLUMNS} FROM ride_requests WHERE id = $1{lock}",
            ride_request_id,
        )
        return RideRequest.model_validate(dict(row)) if row else None

    async def update_fields(
        self,
        ride_request_id: str,
        fields: dict[str, Any],
        *,
        conn: Optional[Connection] = None,
    ) -> Optional[RideRequest]:
        unknown = set(fields) - _REQUEST_UPDATABLE
        if unknown:
            raise ValueError(f"Недопустимые поля заявки: {sorted(unknown)}")
        if not fields:
            return await self.get_by_id(ride_request_id, conn=conn)

        names = list(fields)
        assignments = ", ".join(f"{name} = ${i + 2}" for i, name in enumerate(names))
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE ride_requests
            SET {assignments}, updated_at = NOW()
            WHERE id = $1
            RETURNING {_REQUEST_COLUMNS}
            """,
            ride_request_id,
            *(fields[name] for name in names),
        )
        return RideRequest.model_validate(dict(row)) if row else None

    async def transition(
        self,
        ride_request_id: str,
        from_statuses: tuple[RideRequestStatus, ...],
        to_status: RideRequestStatus,
        *,
        conn: Optional[Connection] = None,
    ) -> Optional[RideRequest]:
        """Меняет статус, если текущий входит в from_statuses."""
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE ride_requests
            SET status = $2, updated_at = NOW()
            WHERE id = $1 AND status = ANY($3::text[])
            RETURNING {_REQUEST_COLUMNS}
            """,
            ride_request_id,
            to_status.value,
            [status.value for status in from_statuses],
        )
        return RideRequest.model_validate(dict(row)) if row else None

    async def mark_accepted(
        self,
        ride_request_id: str,
        driver_id: str,
        *,
        conn: Optional[Connection] = None,
    ) -> Optional[RideRequest]:
        """
        Назначает водителя и переводит активную заявку в ACCEPTED.

        Водитель и статус ставятся одним UPDATE; повтор для уже
        принятой заявки ничего не меняет и возвращает None.
        """
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE ride_requests
            SET status = $2, driver_id = $3, updated_at = NOW()
            WHERE id = $1 AND status = ANY($4::text[])
            RETURNING {_REQUEST_COLUMNS}
            """,
            ride_request_id,
            RideRequestStatus.ACCEPTED.value,
            driver_id,
            _ACTIVE,
        )
        return RideRequest.model_validate(dict(row)) if row else None

    async def list_by_passenger(self, passenger_id: str, limit: int = 100) -> list[RideRequest]:
        rows = await self._db.fetch(
            f"""
            SELECT {_REQUEST_COLUMNS}
            FROM ride_requests
            WHERE passenger_id = $1
            ORDER BY created_at DESC
            LIMIT $2
            """,
            passenger_id,
            limit,
        )
        return [RideRequest.model_validate(dict(row)) for row in rows]

    async def search(
        self,
        statuses: list[RideRequestStatus],
        *,
        from_city: Optional[str] = None,
        to_city: Optional[str] = None,
        pickup_box: Optional[tuple[float, float, float, float]] = None,
        dropoff_box: Optional[tuple[float, float, float, float]] = None,
        limit: int = SEARCH_SCAN_LIMIT,
    ) -> list[RideRequest]:
        """
        Грубый отбор заявок для поиска водителем.

        Город и прямоугольник одной точки маршрута объединяются через OR.
        Точный радиус считает сервис.
        """
        params: list[Any] = [[status.value for status in statuses]]
        conditions = ["status = ANY($1::text[])"]

        for city_column, lat_column, lng_column, city, box in (
            ("from_city", "from_lat", "from_lng", from_city, pickup_box),
            ("to_city", "to_lat", "to_lng", to_city, dropoff_box),
        ):
            clauses: list[str] = []
            if city:
                params.append(f"%{_escape_like(city)}%")
                clauses.append(f"{city_column} ILIKE ${len(params)}")
            if box is not None:
                params.extend(box)
                n = len(params)
                clauses.append(
                    f"({lat_column} BETWEEN ${n - 3} AND ${n - 2} "
                    f"AND {lng_column} BETWEEN ${n - 1} AND ${n})"
                )
            if clauses:
                conditions.append("(" + " OR ".join(clauses) + ")")

        params.append(limit)
        rows = await self._db.fetch(
            f"""
            SELECT {_REQUEST_COLUMNS}
            FROM ride_requests
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC
            LIMIT ${len(params)}
            """,
            *params,
        )
        return [RideRequest.model_validate(dict(row)) for row in rows]


class OfferRepository:
    """Репозиторий предложений водителей."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def _executor(self, conn: Optional[Connection]) -> Any:
        return conn if conn is not None else self._db

    async def get_by_id(
        self,
        offer_id: str,
        *,
        conn: Optional[Connection] = None,
        for_update: bool = False,
    ) -> Optional[RideRequestOffer]:
        lock = " FOR UPDATE" if for_update and conn is not None else ""
        row = await self._executor(conn).fetchrow(
            f"SELECT {_OFFER_COLUMNS} FROM ride_request_offers WHERE id = $1{lock}",
            offer_id,
        )
        return RideRequestOffer.model_validate(dict(row)) if row else None

    async def find(
        self,
        ride_request_id: str,
        driver_id: str,
        ride_id: Optional[str],
        *,
        conn: Optional[Connection] = None,
        for_update: bool = False,
    ) -> Optional[RideRequestOffer]:
        """Предложение водителя по заявке для конкретной поездки (или без поездки)."""
        lock = " FOR UPDATE" if for_update and conn is not None else ""
        row = await self._executor(conn).fetchrow(
            f"""
            SELECT {_OFFER_COLUMNS}
            FROM ride_request_offers
            WHERE ride_request_id = $1 AND driver_id = $2 AND ride_id IS NOT DISTINCT FROM $3
            {lock}
            """,
            ride_request_id,
            driver_id,
            ride_id,
        )
        return RideRequestOffer.model_validate(dict(row)) if row else None

    async def create(
        self,
        *,
        ride_request_id: str,
        driver_id: str,
        ride_id: Optional[str],
        seats_offered: int,
        price_per_seat: float,
        status: OfferStatus = OfferStatus.PENDING,
        booking_id: Optional[str] = None,
        conn: Optional[Connection] = None,
    ) -> RideRequestOffer:
        row = await self._executor(conn).fetchrow(
            f"""
            INSERT INTO ride_request_offers (
                ride_request_id, driver_id, ride_id, booking_id, seats_offered, price_per_seat, status
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            RETURNING {_OFFER_COLUMNS}
            """,
            ride_request_id,
            driver_id,
            ride_id,
            booking_id,
            seats_offered,
            price_per_seat,
            status.value,
        )
        return RideRequestOffer.model_validate(dict(row))

    async def update(
        self,
        offer_id: str,
        *,
        status: OfferStatus,
        seats_offered: Optional[int] = None,
        price_per_seat: Optional[float] = None,
        ride_id: Optional[str] = None,
        booking_id: Optional[str] = None,
        conn: Optional[Connection] = None,
    ) -> Optional[RideRequestOffer]:
        """Меняет статус и, если переданы, условия предложения."""
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE ride_request_offers
            SET status = $2,
                seats_offered = COALESCE($3, seats_offered),
                price_per_seat = COALESCE($4, price_per_seat),
                ride_id = COALESCE($5, ride_id),
                booking_id = COALESCE($6, booking_id),
                updated_at = NOW()
            WHERE id = $1
            RETURNING {_OFFER_COLUMNS}
            """,
            offer_id,
            status.value,
            seats_offered,
            price_per_seat,
            ride_id,
            booking_id,
        )
        return RideRequestOffer.model_validate(dict(row)) if row else None

    async def transition(
        self,
        offer_id: str,
        from_status: OfferStatus,
        to_status: OfferStatus,
        *,
        conn: Optional[Connection] = None,
    ) -> Optional[RideRequestOffer]:
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE ride_request_offers
            SET status = $3, updated_at = NOW()
            WHERE id = $1 AND status = $2
            RETURNING {_OFFER_COLUMNS}
            """,
            offer_id,
            from_status.value,
            to_status.value,
        )
        return RideRequestOffer.model_validate(dict(row)) if row else None

    async def reject_other_pending(
        self,
        ride_request_id: str,
        *,
        keep_offer_id: Optional[str] = None,
        conn: Optional[Connection] = None,
    ) -> int:
        """
        Отклоняет остальные ожидающие предложения по заявке.

        Returns:
            Количество отклонённых предложений
        """
        status = await self._executor(conn).execute(
            """
            UPDATE ride_request_offers
            SET status = $2, updated_at = NOW()
            WHERE ride_request_id = $1
              AND status = $3
              AND id IS DISTINCT FROM $4
            """,
            ride_request_id,
            OfferStatus.REJECTED.value,
            OfferStatus.PENDING.value,
            keep_offer_id,
        )
        return _affected_rows(status)

    async def get_accepted(
        self,
        ride_request_id: str,
        *,
        conn: Optional[Connection] = None,
    ) -> Optional[RideRequestOffer]:
        row = await self._executor(conn).fetchrow(
            f"""
            SELECT {_OFFER_COLUMNS}
            FROM ride_request_offers
            WHERE ride_request_id = $1 AND status = $2
            """,
            ride_request_id,
            OfferStatus.ACCEPTED.value,
        )
        return RideRequestOffer.model_validate(dict(row)) if row else None

    async def list_by_request(
        self,
        ride_request_id: str,
        driver_id: Optional[str] = None,
    ) -> list[RideRequestOffer]:
        """Предложения по заявке; с driver_id только предложения этого водителя."""
        rows = await self._db.fetch(
            f"""
            SELECT {_OFFER_COLUMNS}
            FROM ride_request_offers
            WHERE ride_request_id = $1 AND ($2::text IS NULL OR driver_id = $2)
            ORDER BY created_at DESC
            """,
            ride_request_id,
            driver_id,
        )
        return [RideRequestOffer.model_validate(dict(row)) for row in rows]
