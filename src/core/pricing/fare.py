# src/core/pricing/fare.py
"""
Сумма к оплате за бронирование и комиссия платформы (в центах).
"""

from __future__ import annotations

from dataclasses import dataclass

from src.config.loader import PricingSettings
from src.core.pricing.geo import haversine_km
from src.core.pricing.money import round_half_up


@dataclass(frozen=True)
class FareBreakdown:
    """Детализация суммы бронирования."""
    distance_km: float
    seat_subtotal_cents: int
    base_fare_cents: int
    distance_cents: int
    service_fee_cents: int
    subtotal_cents: int
    tax_cents: int
    fare_cents: int

    def as_metadata(self) -> dict[str, str]:
        """Строковые поля для метаданных платёжного намерения."""
        return {
            "distanceKm": f"{self.distance_km:.2f}",
            "seatSubtotalCents": str(self.seat_subtotal_cents),
            "baseFareCents": str(self.base_fare_cents),
            "distanceCents": str(self.distance_cents),
            "serviceFeeCents": str(self.service_fee_cents),
            "taxCents": str(self.tax_cents),
        }


def calculate_booking_fare(
    *,
    from_lat: float,
    from_lng: float,
    to_lat: float,
    to_lng: float,
    price_per_seat: float,
    seats_booked: int,
    rules: PricingSettings,
) -> FareBreakdown:
    """
    Считает сумму к оплате.

    Тариф поездки = max(цена мест, базовый тариф + тариф за км),
    затем сервисный сбор и налог в базисных пунктах.
    """
    distance_km = haversine_km(from_lat, from_lng, to_lat, to_lng)
    seat_subtotal = round_half_up(price_per_seat * seats_booked * 100)
    distance_cents = round_half_up(distance_km * rules.PAYMENT_PER_KM_RATE_CENTS)
    ride_fare = max(seat_subtotal, rules.PAYMENT_BASE_FARE_CENTS + distance_cents)
    subtotal = ride_fare + rules.PAYMENT_SERVICE_FEE_CENTS
    tax = round_half_up(subtotal * rules.PAYMENT_TAX_BPS / 10_000)

    return FareBreakdown(
        distance_km=distance_km,
        seat_subtotal_cents=seat_subtotal,
        base_fare_cents=rules.PAYMENT_BASE_FARE_CENTS,
        distance_cents=distance_cents,
        service_fee_cents=rules.PAYMENT_SERVICE_FEE_CENTS,
        subtotal_cents=subtotal,
        tax_cents=tax,
        fare_cents=subtotal + tax,
    )


def platform_fee_cents(fare_cents: int, fee_pct: float) -> int:
    """Комиссия платформы: доля fee_pct (0..1) от суммы, округлённая до цента."""
    return round_half_up(fare_cents * fee_pct)
