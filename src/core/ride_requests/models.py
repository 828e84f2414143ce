# src/core/ride_requests/models.py
"""
Модели заявок пассажиров и предложений водителей.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.common.constants import (
    ACTIVE_RIDE_REQUEST_STATUSES,
    TERMINAL_RIDE_REQUEST_STATUSES,
    OfferStatus,
    RideRequestMode,
    RideRequestStatus,
)
from src.core.bookings.models import Booking
from src.core.rides.models import Ride
from src.shared.models.common import UtcDatetime

# Значение metadata.flow у намерений JIT-заявок
JIT_FLOW = "ride_request_jit"


# =============================================================================
# ЗАЯВКИ
# =============================================================================

class RideRequest(BaseModel):
    """Заявка пассажира на поездку."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    passenger_id: str
    driver_id: Optional[str] = None
    mode: RideRequestMode = RideRequestMode.OFFER
    status: RideRequestStatus = RideRequestStatus.PENDING

    from_city: str
    from_lat: float
    from_lng: float
    to_city: str
    to_lat: float
    to_lng: float
    preferred_date: datetime
    preferred_time: Optional[str] = None
    arrival_time: Optional[str] = None
    seats_needed: int
    ride_type: str
    trip_type: str
    return_date: Optional[datetime] = None
    return_time: Optional[str] = None

    jit_payment_intent_id: Optional[str] = None
    jit_amount_cents: Optional[int] = None
    jit_currency: Optional[str] = None
    quoted_price_per_seat: Optional[float] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RIDE_REQUEST_STATUSES

    @property
    def is_jit(self) -> bool:
        return self.mode == RideRequestMode.JIT


class RideRequestCreateDTO(BaseModel):
    """Тело запроса на создание заявки."""

    model_config = ConfigDict(extra="forbid")

    from_city: str = Field(..., min_length=1)
    from_lat: float = Field(..., ge=-90, le=90)
    from_lng: float = Field(..., ge=-180, le=180)
    to_city: str = Field(..., min_length=1)
    to_lat: float = Field(..., ge=-90, le=90)
    to_lng: float = Field(..., ge=-180, le=180)
    preferred_date: UtcDatetime
    preferred_time: Optional[str] = None
    arrival_time: Optional[str] = None
    seats_needed: int = Field(..., gt=0)
    ride_type: str = Field(..., min_length=1)
    trip_type: str = Field(..., min_length=1)
    return_date: Optional[UtcDatetime] = None
    return_time: Optional[str] = None


class JitIntentCreateDTO(RideRequestCreateDTO):
    """Параметры поездки для JIT-оплаты; заявка появится после оплаты."""

    base_price_per_seat: Optional[float] = Field(None, gt=0)


class RideRequestUpdateDTO(BaseModel):
    """Частичное обновление заявки."""

    model_config = ConfigDict(extra="forbid")

    from_city: Optional[str] = Field(None, min_length=1)
    from_lat: Optional[float] = Field(None, ge=-90, le=90)
    from_lng: Optional[float] = Field(None, ge=-180, le=180)
    to_city: Optional[str] = Field(None, min_length=1)
    to_lat: Optional[float] = Field(None, ge=-90, le=90)
    to_lng: Optional[float] = Field(None, ge=-180, le=180)
    preferred_date: Optional[UtcDatetime] = None
    preferred_time: Optional[str] = None
    arrival_time: Optional[str] = None
    seats_needed: Optional[int] = Field(None, gt=0)
    ride_type: Optional[str] = Field(None, min_length=1)
    trip_type: Optional[str] = Field(None, min_length=1)
    return_date: Optional[UtcDatetime] = None
    return_time: Optional[str] = None

    @model_validator(mode="after")
    def check_not_empty(self) -> "RideRequestUpdateDTO":
        if not self.model_fields_set:
            raise ValueError("Нужно передать хотя бы одно поле")
        return self


class RideRequestSearch(BaseModel):
    """
    Фильтры поиска открытых заявок водителем.

    Координаты проверяются сервисом, чтобы неверный запрос получил 400.
    """

    from_city: Optional[str] = None
    to_city: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    to_lat: Optional[float] = None
    to_lng: Optional[float] = None
    radius_km: float = 25.0
    status: Optional[RideRequestStatus] = None
    limit: int = 50
    cursor: Optional[str] = None


class RideRequestActionResult(RideRequest):
    """Заявка после отмены; idempotent для повторной отмены."""
    idempotent: bool = False


class RideRequestPage(BaseModel):
    """Страница результатов поиска заявок."""
    requests: list[RideRequest]
    next_cursor: Optional[str] = None


class JitIntentResponse(BaseModel):
    """Ответ на создание JIT-намерения оплаты."""
    client_secret: str
    payment_intent_id: str
    amount: int
    currency: str
    quoted_price_per_seat: float
    request_mode: RideRequestMode = RideRequestMode.JIT


# =============================================================================
# ПРЕДЛОЖЕНИЯ
# =============================================================================

class RideRequestOffer(BaseModel):
    """Предложение водителя по заявке."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    ride_request_id: str
    driver_id: str
    ride_id: Optional[str] = None
    booking_id: Optional[str] = None
    seats_offered: int
    price_per_seat: float
    status: OfferStatus = OfferStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OfferCreateDTO(BaseModel):
    """Тело запроса водителя на предложение."""

    model_config = ConfigDict(extra="forbid")

    ride_id: str = Field(..., min_length=1)
    seats_offered: Optional[int] = Field(None, gt=0)


class OfferAcceptResult(BaseModel):
    """Результат принятия предложения пассажиром."""
    offer: RideRequestOffer
    ride_request: RideRequest
    booking: Booking
    ride: Optional[Ride] = None
    idempotent: bool = False


class OfferActionResult(RideRequestOffer):
    """Предложение после отклонения или отзыва; idempotent для повтора."""
    idempotent: bool = False


# =============================================================================
# ПРИНЯТИЕ ДИСПЕТЧЕРОМ
# =============================================================================

class DispatchAcceptDTO(BaseModel):
    """Тело обратного вызова диспетчера."""

    model_config = ConfigDict(extra="forbid")

    driver_id: str = Field(..., min_length=1)
    ride_id: Optional[str] = None
    seats_offered: Optional[int] = Field(None, gt=0)
    price_per_seat: Optional[float] = None


class DispatchAcceptResult(BaseModel):
    """Ответ на принятие заявки диспетчером."""
    ok: bool = True
    idempotent: bool = False
    ride_request_id: str
    status: RideRequestStatus
    driver_id: Optional[str] = None
    ride_request: Optional[RideRequest] = None
    ride: Optional[Ride] = None
    booking: Optional[Booking] = None
    offer: Optional[RideRequestOffer] = None


def is_terminal_request_status(status: RideRequestStatus) -> bool:
    return status in TERMINAL_RIDE_REQUEST_STATUSES


def jit_metadata(dto: RideRequestCreateDTO, passenger_id: str, quoted_price: float) -> dict[str, str]:
    """Строковые метаданные JIT-намерения; из них создаётся заявка после оплаты."""
    return {
        "flow": JIT_FLOW,
        "mode": RideRequestMode.JIT.value,
        "passengerId": passenger_id,
        "fromCity": dto.from_city,
        "fromLat": str(dto.from_lat),
        "fromLng": str(dto.from_lng),
        "toCity": dto.to_city,
        "toLat": str(dto.to_lat),
        "toLng": str(dto.to_lng),
        "preferredDate": dto.preferred_date.isoformat(),
        "preferredTime": dto.preferred_time or "",
        "arrivalTime": dto.arrival_time or "",
        "seatsNeeded": str(dto.seats_needed),
        "rideType": dto.ride_type,
        "tripType": dto.trip_type,
        "returnDate": dto.return_date.isoformat() if dto.return_date else "",
        "returnTime": dto.return_time or "",
        "quotedPricePerSeat": f"{quoted_price:.2f}",
    }


class JitRequestDraft(BaseModel):
    """
    Поля заявки, восстановленные из метаданных оплаченного намерения.

    Пустые строки метаданных означают отсутствие значения.
    """

    model_config = ConfigDict(populate_by_name=True)

    passenger_id: str = Field(..., alias="passengerId", min_length=1)
    from_city: str = Field(..., alias="fromCity", min_length=1)
    from_lat: float = Field(..., alias="fromLat", ge=-90, le=90)
    from_lng: float = Field(..., alias="fromLng", ge=-180, le=180)
    to_city: str = Field(..., alias="toCity", min_length=1)
    to_lat: float = Field(..., alias="toLat", ge=-90, le=90)
    to_lng: float = Field(..., alias="toLng", ge=-180, le=180)
    preferred_date: UtcDatetime = Field(..., alias="preferredDate")
    preferred_time: Optional[str] = Field(None, alias="preferredTime")
    arrival_time: Optional[str] = Field(None, alias="arrivalTime")
    seats_needed: int = Field(..., alias="seatsNeeded", gt=0)
    ride_type: str = Field(..., alias="rideType", min_length=1)
    trip_type: str = Field(..., alias="tripType", min_length=1)
    return_date: Optional[UtcDatetime] = Field(None, alias="returnDate")
    return_time: Optional[str] = Field(None, alias="returnTime")
    quoted_price_per_seat: Optional[float] = Field(None, alias="quotedPricePerSeat", ge=0)

    @model_validator(mode="before")
    @classmethod
    def drop_empty_strings(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value != ""}
        return data
