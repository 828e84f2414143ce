# src/core/bookings/models.py
"""
Модели бронирований.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import (
    PAID_BOOKING_PAYMENT_STATUSES,
    SEAT_HOLDING_BOOKING_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    BookingPaymentStatus,
    BookingStatus,
)
from src.core.rides.models import Ride


class Booking(BaseModel):
    """Бронирование мест пассажиром."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    ride_id: str
    passenger_id: str
    seats_booked: int
    status: BookingStatus = BookingStatus.PENDING
    payment_status: BookingPaymentStatus = BookingPaymentStatus.UNPAID
    payment_intent_id: Optional[str] = None

    pickup_name: Optional[str] = None
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    dropoff_name: Optional[str] = None
    dropoff_lat: Optional[float] = None
    dropoff_lng: Optional[float] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def holds_seats(self) -> bool:
        """Места по этому бронированию списаны с поездки."""
        return self.status in SEAT_HOLDING_BOOKING_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BOOKING_STATUSES

    @property
    def is_paid(self) -> bool:
        return self.payment_status.value in PAID_BOOKING_PAYMENT_STATUSES


class BookingCreateDTO(BaseModel):
    """Тело запроса на бронирование."""

    model_config = ConfigDict(extra="forbid")

    seats: int = Field(1, gt=0)
    pickup_name: Optional[str] = None
    pickup_lat: Optional[float] = Field(None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(None, ge=-180, le=180)
    dropoff_name: Optional[str] = None
    dropoff_lat: Optional[float] = Field(None, ge=-90, le=90)
    dropoff_lng: Optional[float] = Field(None, ge=-180, le=180)


class BookingRideResult(BaseModel):
    """Бронирование вместе с состоянием поездки после операции."""
    booking: Booking
    ride: Optional[Ride] = None
    # Повтор уже выполненной операции
    idempotent: bool = False
