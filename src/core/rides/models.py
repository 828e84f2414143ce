# src/core/rides/models.py
"""
Модели поездок водителя.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.common.constants import RideStatus
from src.shared.models.common import UtcDatetime


class Ride(BaseModel):
    """Опубликованная поездка водителя."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    driver_id: str
    from_city: str
    from_lat: float
    from_lng: float
    to_city: str
    to_lat: float
    to_lng: float
    start_time: datetime
    price_per_seat: float
    seats_total: int
    seats_available: int
    status: RideStatus = RideStatus.OPEN
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == RideStatus.OPEN


class RideCreateDTO(BaseModel):
    """Тело запроса на создание поездки."""

    model_config = ConfigDict(extra="forbid")

    from_city: str = Field(..., min_length=1)
    from_lat: float = Field(..., ge=-90, le=90)
    from_lng: float = Field(..., ge=-180, le=180)
    to_city: str = Field(..., min_length=1)
    to_lat: float = Field(..., ge=-90, le=90)
    to_lng: float = Field(..., ge=-180, le=180)
    start_time: UtcDatetime
    price_per_seat: float = Field(..., ge=0)
    seats_total: int = Field(..., gt=0)


class RideUpdateDTO(BaseModel):
    """Частичное обновление поездки; отсутствующие поля не меняются."""

    model_config = ConfigDict(extra="forbid")

    from_city: Optional[str] = Field(None, min_length=1)
    from_lat: Optional[float] = Field(None, ge=-90, le=90)
    from_lng: Optional[float] = Field(None, ge=-180, le=180)
    to_city: Optional[str] = Field(None, min_length=1)
    to_lat: Optional[float] = Field(None, ge=-90, le=90)
    to_lng: Optional[float] = Field(None, ge=-180, le=180)
    start_time: Optional[UtcDatetime] = None
    price_per_seat: Optional[float] = Field(None, ge=0)
    seats_total: Optional[int] = Field(None, gt=0)

    @model_validator(mode="after")
    def check_not_empty(self) -> "RideUpdateDTO":
        if not self.model_fields_set:
            raise ValueError("Нужно передать хотя бы одно поле")
        return self


def adjust_available_seats(old_available: int, old_total: int, new_total: int) -> int:
    """
    Пересчитывает свободные места при изменении вместимости.

    Разница вместимости переносится на свободные места,
    результат ограничивается диапазоном [0, new_total].
    """
    return max(0, min(new_total, old_available + (new_total - old_total)))
