# src/services/marketplace/routes/ride_requests.py
"""
Маршруты заявок пассажиров, предложений водителей и обратного вызова диспетчера.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status

from src.common.constants import RideRequestStatus
from src.core.jit.service import JitIntentService
from src.core.ride_requests.models import (
    DispatchAcceptDTO,
    DispatchAcceptResult,
    JitIntentCreateDTO,
    JitIntentResponse,
    OfferAcceptResult,
    OfferActionResult,
    OfferCreateDTO,
    RideRequest,
    RideRequestActionResult,
    RideRequestCreateDTO,
    RideRequestOffer,
    RideRequestPage,
    RideRequestSearch,
    RideRequestUpdateDTO,
)
from src.core.ride_requests.offers import OfferService
from src.core.ride_requests.service import RideRequestService
from src.services.marketplace.auth import CurrentUser, verify_dispatch_secret
from src.services.marketplace.dependencies import (
    get_jit_service,
    get_offer_service,
    get_ride_request_service,
)
from src.services.marketplace.errors import unwrap

router = APIRouter(prefix="/ride-requests", tags=["Ride requests"])

RequestServiceDep = Annotated[RideRequestService, Depends(get_ride_request_service)]
OfferServiceDep = Annotated[OfferService, Depends(get_offer_service)]
JitServiceDep = Annotated[JitIntentService, Depends(get_jit_service)]


# =============================================================================
# ЗАЯВКИ
# =============================================================================

@router.post("", response_model=RideRequest, status_code=status.HTTP_201_CREATED)
async def create_ride_request(
    dto: RideRequestCreateDTO,
    user_id: CurrentUser,
    service: RequestServiceDep,
) -> RideRequest:
    """Заявка в режиме предложений (отправление позже JIT-окна)."""
    return unwrap(await service.create(user_id, dto))


@router.get("", response_model=RideRequestPage)
async def search_ride_requests(
    user_id: CurrentUser,
    service: RequestServiceDep,
    from_city: Optional[str] = None,
    to_city: Optional[str] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    to_lat: Optional[float] = None,
    to_lng: Optional[float] = None,
    radius_km: float = 25.0,
    ride_request_status: Annotated[Optional[RideRequestStatus], Query(alias="status")] = None,
    limit: int = 50,
    cursor: Optional[str] = None,
) -> RideRequestPage:
    """Поиск открытых заявок водителем: по городам и радиусу от точек маршрута."""
    query = RideRequestSearch(
        from_city=from_city,
        to_city=to_city,
        lat=lat,
        lng=lng,
        to_lat=to_lat,
        to_lng=to_lng,
        radius_km=radius_km,
        status=ride_request_status,
        limit=limit,
        cursor=cursor,
    )
    return unwrap(await service.search(query))


@router.get("/me", response_model=list[RideRequest])
async def list_my_ride_requests(user_id: CurrentUser, service: RequestServiceDep) -> list[RideRequest]:
    return await service.list_mine(user_id)


@router.post("/jit/intent", response_model=JitIntentResponse)
async def create_jit_intent(
    dto: JitIntentCreateDTO,
    user_id: CurrentUser,
    service: JitServiceDep,
) -> JitIntentResponse:
    """
    Оплата ближайшей поездки.

    Заявка создаётся только после подтверждения оплаты вебхуком.
    """
    return unwrap(await service.create_intent(user_id, dto))


@router.put("/{ride_request_id}", response_model=RideRequest)
async def update_ride_request(
    ride_request_id: str,
    dto: RideRequestUpdateDTO,
    user_id: CurrentUser,
    service: RequestServiceDep,
) -> RideRequest:
    return unwrap(await service.update(user_id, ride_request_id, dto))


@router.post("/{ride_request_id}/cancel", response_model=RideRequestActionResult)
async def cancel_ride_request(
    ride_request_id: str,
    user_id: CurrentUser,
    service: RequestServiceDep,
) -> RideRequestActionResult:
    return unwrap(await service.cancel(user_id, ride_request_id), RideRequestActionResult)


@router.post(
    "/{ride_request_id}/accept",
    response_model=DispatchAcceptResult,
    dependencies=[Depends(verify_dispatch_secret)],
)
async def dispatcher_accept(
    ride_request_id: str,
    dto: DispatchAcceptDTO,
    service: RequestServiceDep,
) -> DispatchAcceptResult:
    """Принятие заявки диспетчером (сервер-сервер)."""
    return unwrap(await service.accept_from_dispatcher(ride_request_id, dto))


# =============================================================================
# ПРЕДЛОЖЕНИЯ
# =============================================================================

@router.post(
    "/{ride_request_id}/offers",
    response_model=RideRequestOffer,
    status_code=status.HTTP_201_CREATED,
)
async def create_offer(
    ride_request_id: str,
    dto: OfferCreateDTO,
    user_id: CurrentUser,
    service: OfferServiceDep,
) -> RideRequestOffer:
    return unwrap(await service.create(user_id, ride_request_id, dto))


@router.get("/{ride_request_id}/offers", response_model=list[RideRequestOffer])
async def list_offers(
    ride_request_id: str,
    user_id: CurrentUser,
    service: OfferServiceDep,
) -> list[RideRequestOffer]:
    return unwrap(await service.list_for_request(user_id, ride_request_id))


@router.put("/{ride_request_id}/offers/{offer_id}/accept", response_model=OfferAcceptResult)
async def accept_offer(
    ride_request_id: str,
    offer_id: str,
    user_id: CurrentUser,
    service: OfferServiceDep,
) -> OfferAcceptResult:
    return unwrap(await service.accept(user_id, ride_request_id, offer_id))


@router.put("/{ride_request_id}/offers/{offer_id}/reject", response_model=OfferActionResult)
async def reject_offer(
    ride_request_id: str,
    offer_id: str,
    user_id: CurrentUser,
    service: OfferServiceDep,
) -> OfferActionResult:
    return unwrap(await service.reject(user_id, ride_request_id, offer_id), OfferActionResult)


@router.put("/{ride_request_id}/offers/{offer_id}/cancel", response_model=OfferActionResult)
async def cancel_offer(
    ride_request_id: str,
    offer_id: str,
    user_id: CurrentUser,
    service: OfferServiceDep,
) -> OfferActionResult:
    return unwrap(await service.cancel(user_id, ride_request_id, offer_id), OfferActionResult)
