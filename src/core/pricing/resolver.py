# src/core/pricing/resolver.py
"""
Расчёт цены за место.

Порядок правил:
1. активная фиксированная цена пары городов заменяет базовую;
2. до отправления не больше SURGE_WINDOW_HOURS часов: цена x SURGE_MULTIPLIER;
3. дальняя поездка на 1-2 места: цена не ниже LONG_DISTANCE_FLOOR_PRICE;
4. дистанция от LONG_DISTANCE_CAP_KM: цена не выше LONG_DISTANCE_CAP_PRICE;
5. жёсткий потолок distance_km * DISTANCE_PRICE_CAP_PER_KM, применяется последним.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from src.config.loader import PricingSettings
from src.core.pricing.geo import haversine_km
from src.core.pricing.money import round_to_cents
from src.core.pricing.repository import FixedRoutePriceRepository
from src.shared.models.common import as_utc


@dataclass(frozen=True)
class SeatPrice:
    """Итоговая цена за место и расстояние маршрута."""
    price_per_seat: float
    distance_km: float


def hours_until(departure_time: datetime, reference: datetime) -> float:
    """Часы от reference до отправления (отрицательно для прошедшего времени)."""
    return (as_utc(departure_time) - as_utc(reference)).total_seconds() / 3600


def apply_price_rules(
    base_price: float,
    *,
    distance_km: float,
    seats: int,
    hours_to_departure: float,
    rules: PricingSettings,
) -> float:
    """
    Применяет правила 2-5 к цене за место.

    Returns:
        Цена, округлённая до центов
    """
    price = base_price

    if hours_to_departure <= rules.SURGE_WINDOW_HOURS:
        price *= rules.SURGE_MULTIPLIER

    if (
        distance_km >= rules.LONG_DISTANCE_FLOOR_KM
        and seats <= rules.LONG_DISTANCE_FLOOR_MAX_SEATS
        and price < rules.LONG_DISTANCE_FLOOR_PRICE
    ):
        price = rules.LONG_DISTANCE_FLOOR_PRICE

    if distance_km >= rules.LONG_DISTANCE_CAP_KM and price > rules.LONG_DISTANCE_CAP_PRICE:
        price = rules.LONG_DISTANCE_CAP_PRICE

    price = min(price, distance_km * rules.DISTANCE_PRICE_CAP_PER_KM)

    return round_to_cents(price)


class SeatPriceResolver:
    """Резолвер цены за место с учётом фиксированных цен маршрутов."""

    def __init__(self, fixed_routes: FixedRoutePriceRepository, rules: PricingSettings) -> None:
        self._fixed_routes = fixed_routes
        self._rules = rules

    async def resolve(
        self,
        *,
        from_city: str,
        to_city: str,
        from_lat: float,
        from_lng: float,
        to_lat: float,
        to_lng: float,
        seats: int,
        base_price_per_seat: float,
        departure_time: datetime,
        booked_at: datetime | None = None,
    ) -> SeatPrice:
        """
        Вычисляет цену за место.

        Args:
            from_city / to_city: Города маршрута (для поиска фиксированной цены)
            from_lat..to_lng: Координаты маршрута (валидируются вызывающим кодом)
            seats: Количество мест
            base_price_per_seat: Цена, предложенная водителем или по умолчанию
            departure_time: Время отправления
            booked_at: Момент бронирования (по умолчанию сейчас)
        """
        distance_km = haversine_km(from_lat, from_lng, to_lat, to_lng)

        fixed_price = await self._fixed_routes.get_active_price(from_city, to_city)
        base = fixed_price if fixed_price is not None else base_price_per_seat

        reference = booked_at or datetime.now(timezone.utc)
        price = apply_price_rules(
            base,
            distance_km=distance_km,
            seats=seats,
            hours_to_departure=hours_until(departure_time, reference),
            rules=self._rules,
        )
        return SeatPrice(price_per_seat=price, distance_km=distance_km)
