# src/services/marketplace/routes/rides.py
"""
Маршруты поездок водителя.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from src.core.rides.models import Ride, RideCreateDTO, RideUpdateDTO
from src.core.rides.service import RideService
from src.services.marketplace.auth import CurrentUser
from src.services.marketplace.dependencies import get_ride_service
from src.services.marketplace.errors import unwrap

router = APIRouter(prefix="/rides", tags=["Rides"])

RideServiceDep = Annotated[RideService, Depends(get_ride_service)]


@router.post("", response_model=Ride, status_code=status.HTTP_201_CREATED)
async def create_ride(dto: RideCreateDTO, user_id: CurrentUser, service: RideServiceDep) -> Ride:
    """Публикация поездки."""
    return unwrap(await service.create(user_id, dto))


@router.get("/me", response_model=list[Ride])
async def list_my_rides(user_id: CurrentUser, service: RideServiceDep) -> list[Ride]:
    return await service.list_mine(user_id)


@router.put("/{ride_id}", response_model=Ride)
async def update_ride(
    ride_id: str,
    dto: RideUpdateDTO,
    user_id: CurrentUser,
    service: RideServiceDep,
) -> Ride:
    return unwrap(await service.update(user_id, ride_id, dto))


@router.post("/{ride_id}/start", response_model=Ride)
async def start_ride(ride_id: str, user_id: CurrentUser, service: RideServiceDep) -> Ride:
    return unwrap(await service.start(user_id, ride_id))


@router.post("/{ride_id}/complete")
async def complete_ride(ride_id: str, user_id: CurrentUser, service: RideServiceDep) -> dict[str, Any]:
    """Завершение поездки вместе с бронированиями."""
    return unwrap(await service.complete(user_id, ride_id))


@router.post("/{ride_id}/cancel")
async def cancel_ride(ride_id: str, user_id: CurrentUser, service: RideServiceDep) -> dict[str, Any]:
    """Отмена поездки с возвратом оплаченных бронирований."""
    return unwrap(await service.cancel(user_id, ride_id))
