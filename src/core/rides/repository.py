# src/core/rides/repository.py
"""
Репозиторий поездок.

Методы принимают необязательное соединение conn: внутри транзакции
сервис передаёт соединение из db.transaction(), иначе запрос идёт через пул.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from asyncpg import Connection

from src.common.constants import RideStatus
from src.core.rides.models import Ride
from src.infra.database import DatabaseManager

_RIDE_COLUMNS = """
    id, driver_id, from_city, from_lat, from_lng, to_city, to_lat, to_lng,
    start_time, price_per_seat, seats_total, seats_available, status,
    created_at, updated_at
"""

# Поля, которые разрешено менять через update_fields
_UPDATABLE = frozenset({
    "from_city", "from_lat", "from_lng", "to_city", "to_lat", "to_lng",
    "start_time", "price_per_seat", "seats_total", "seats_available",
})


class RideRepository:
    """Репозиторий поездок."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def _executor(self, conn: Optional[Connection]) -> Any:
        return conn if conn is not None else self._db

    async def create(
        self,
        *,
        driver_id: str,
        from_city: str,
        from_lat: float,
        from_lng: float,
        to_city: str,
        to_lat: float,
        to_lng: float,
        start_time: datetime,
        price_per_seat: float,
        seats_total: int,
        seats_available: int | None = None,
        conn: Optional[Connection] = None,
    ) -> Ride:
        """
        Создаёт открытую поездку.

        Args:
            seats_available: Свободные места (по умолчанию равны seats_total)
        """
        row = await self._executor(conn).fetchrow(
            f"""
            INSERT INTO rides (
                driver_id, from_city, from_lat, from_lng, to_city, to_lat, to_lng,
                start_time, price_per_seat, seats_total, seats_available, status
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            RETURNING {_RIDE_COLUMNS}
            """,
            driver_id,
            from_city,
            from_lat,
            from_lng,
            to_city,
            to_lat,
            to_lng,
            start_time,
            price_per_seat,
            seats_total,
            seats_total if seats_available is None else seats_available,
            RideStatus.OPEN.value,
        )
        return Ride.model_validate(dict(row))

    async def get_by_id(
        self,
        ride_id: str,
        *,
        conn: Optional[Connection] = None,
        for_update: bool = False,
    ) -> Optional[Ride]:
        """
        Получает поездку по ID.

        Args:
            for_update: Заблокировать строку до конца транзакции (только с conn)
        """
        lock = " FOR UPDATE" if for_update and conn is not None else ""
        row = await self._executor(conn).fetchrow(
            f"SELECT {_RIDE_COLUMNS} FROM rides WHERE id = $1{lock}",
            ride_id,
        )
        return Ride.model_validate(dict(row)) if row else None

    async def update_fields(
        self,
        ride_id: str,
        fields: dict[str, Any],
        *,
        conn: Optional[Connection] = None,
    ) -> Optional[Ride]:
        """Обновляет перечисленные поля поездки."""
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Недопустимые поля поездки: {sorted(unknown)}")
        if not fields:
            return await self.get_by_id(ride_id, conn=conn)

        names = list(fields)
        assignments = ", ".join(f"{name} = ${i + 2}" for i, name in enumerate(names))
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE rides
            SET {assignments}, updated_at = NOW()
            WHERE id = $1
            RETURNING {_RIDE_COLUMNS}
            """,
            ride_id,
            *(fields[name] for name in names),
        )
        return Ride.model_validate(dict(row)) if row else None

    async def transition_status(
        self,
        ride_id: str,
        from_statuses: tuple[RideStatus, ...],
        to_status: RideStatus,
        *,
        conn: Optional[Connection] = None,
    ) -> Optional[Ride]:
        """
        Меняет статус, только если текущий статус входит в from_statuses.

        Returns:
            Обновлённая поездка или None, если статус уже другой
        """
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE rides
            SET status = $2, updated_at = NOW()
            WHERE id = $1 AND status = ANY($3::text[])
            RETURNING {_RIDE_COLUMNS}
            """,
            ride_id,
            to_status.value,
            [status.value for status in from_statuses],
        )
        return Ride.model_validate(dict(row)) if row else None

    async def reserve_seats(
        self,
        ride_id: str,
        seats: int,
        *,
        conn: Optional[Connection] = None,
    ) -> Optional[Ride]:
        """
        Атомарно списывает места у открытой поездки.

        Проверка и списание выполняются одним UPDATE, поэтому два
        параллельных подтверждения не могут продать одно место дважды.

        Returns:
            Обновлённая поездка или None, если мест не хватает или поездка не открыта
        """
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE rides
            SET seats_available = seats_available - $2, updated_at = NOW()
            WHERE id = $1 AND status = $3 AND seats_available >= $2
            RETURNING {_RIDE_COLUMNS}
            """,
            ride_id,
            seats,
            RideStatus.OPEN.value,
        )
        return Ride.model_validate(dict(row)) if row else None

    async def release_seats(
        self,
        ride_id: str,
        seats: int,
        *,
        conn: Optional[Connection] = None,
    ) -> Optional[Ride]:
        """Возвращает места, не превышая вместимость поездки."""
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE rides
            SET seats_available = LEAST(seats_total, seats_available + $2), updated_at = NOW()
            WHERE id = $1
            RETURNING {_RIDE_COLUMNS}
            """,
            ride_id,
            seats,
        )
        return Ride.model_validate(dict(row)) if row else None

    async def list_by_driver(self, driver_id: str, limit: int = 100) -> list[Ride]:
        rows = await self._db.fetch(
            f"""
            SELECT {_RIDE_COLUMNS}
            FROM rides
            WHERE driver_id = $1
            ORDER BY start_time DESC
            LIMIT $2
            """,
            driver_id,
            limit,
        )
        return [Ride.model_validate(dict(row)) for row in rows]
