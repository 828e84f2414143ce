# src/services/marketplace/routes/__init__.py
"""
Роутеры API маркетплейса.
"""

from src.services.marketplace.routes.bookings import router as bookings_router
from src.services.marketplace.routes.payments import router as payments_router
from src.services.marketplace.routes.ride_requests import router as ride_requests_router
from src.services.marketplace.routes.rides import router as rides_router
from src.services.marketplace.routes.webhooks import router as webhooks_router

__all__ = [
    "bookings_router",
    "payments_router",
    "ride_requests_router",
    "rides_router",
    "webhooks_router",
]
