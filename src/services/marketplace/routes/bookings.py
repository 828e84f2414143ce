# src/services/marketplace/routes/bookings.py
"""
Маршруты бронирований.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from src.core.bookings.models import Booking, BookingCreateDTO, BookingRideResult
from src.core.bookings.service import BookingService
from src.services.marketplace.auth import CurrentUser
from src.services.marketplace.dependencies import get_booking_service
from src.services.marketplace.errors import unwrap

router = APIRouter(tags=["Bookings"])

BookingServiceDep = Annotated[BookingService, Depends(get_booking_service)]


@router.post(
    "/rides/{ride_id}/bookings",
    response_model=Booking,
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(
    ride_id: str,
    dto: BookingCreateDTO,
    user_id: CurrentUser,
    service: BookingServiceDep,
) -> Booking:
    """Запрос пассажира на места в поездке."""
    return unwrap(await service.create(user_id, ride_id, dto))


@router.get("/bookings/me", response_model=list[Booking])
async def list_my_bookings(user_id: CurrentUser, service: BookingServiceDep) -> list[Booking]:
    return await service.list_mine(user_id)


@router.get("/bookings/ride/{ride_id}", response_model=list[Booking])
async def list_ride_bookings(
    ride_id: str,
    user_id: CurrentUser,
    service: BookingServiceDep,
) -> list[Booking]:
    """Бронирования поездки (только для водителя)."""
    return unwrap(await service.list_for_ride(user_id, ride_id))


@router.put("/bookings/{booking_id}/confirm", response_model=BookingRideResult)
async def confirm_booking(
    booking_id: str,
    user_id: CurrentUser,
    service: BookingServiceDep,
) -> BookingRideResult:
    return unwrap(await service.confirm(user_id, booking_id))


@router.put("/bookings/{booking_id}/reject", response_model=BookingRideResult)
async def reject_booking(
    booking_id: str,
    user_id: CurrentUser,
    service: BookingServiceDep,
) -> BookingRideResult:
    return unwrap(await service.reject(user_id, booking_id))


@router.post("/bookings/{booking_id}/cancel", response_model=BookingRideResult)
async def cancel_booking(
    booking_id: str,
    user_id: CurrentUser,
    service: BookingServiceDep,
) -> BookingRideResult:
    """Отмена пассажиром (с возвратом, если бронирование оплачено)."""
    return unwrap(await service.cancel_by_passenger(user_id, booking_id))


@router.post("/bookings/{booking_id}/driver-cancel", response_model=BookingRideResult)
async def driver_cancel_booking(
    booking_id: str,
    user_id: CurrentUser,
    service: BookingServiceDep,
) -> BookingRideResult:
    """Отмена водителем (с возвратом, если бронирование оплачено)."""
    return unwrap(await service.cancel_by_driver(user_id, booking_id))
