# src/core/ride_requests/__init__.py
"""
Домен заявок пассажиров и предложений водителей.
Сервисы импортируются из модулей service, offers и broadcast.
"""

from src.core.ride_requests.models import (
    RideRequest,
    RideRequestCreateDTO,
    RideRequestOffer,
    RideRequestPage,
    RideRequestSearch,
    RideRequestUpdateDTO,
)
from src.core.ride_requests.repository import OfferRepository, RideRequestRepository

__all__ = [
    "RideRequest",
    "RideRequestCreateDTO",
    "RideRequestOffer",
    "RideRequestPage",
    "RideRequestSearch",
    "RideRequestUpdateDTO",
    "OfferRepository",
    "RideRequestRepository",
]
