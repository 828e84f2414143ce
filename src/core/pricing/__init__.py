# src/core/pricing/__init__.py
"""
Домен ценообразования.
Цена за место, сумма бронирования и фиксированные цены маршрутов.
"""

from src.core.pricing.fare import FareBreakdown, calculate_booking_fare, platform_fee_cents
from src.core.pricing.geo import haversine_km, is_valid_coordinate
from src.core.pricing.repository import FixedRoutePriceRepository, normalize_city
from src.core.pricing.resolver import SeatPrice, SeatPriceResolver, apply_price_rules

__all__ = [
    "FareBreakdown",
    "calculate_booking_fare",
    "platform_fee_cents",
    "haversine_km",
    "is_valid_coordinate",
    "FixedRoutePriceRepository",
    "normalize_city",
    "SeatPrice",
    "SeatPriceResolver",
    "apply_price_rules",
]
