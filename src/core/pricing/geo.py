# src/core/pricing/geo.py
"""
Геометрия маршрута: расстояние по дуге большого круга и проверка координат.
"""

from __future__ import annotations

import math

EARTH_RADIUS_KM = 6371.0


def haversine_km(from_lat: float, from_lng: float, to_lat: float, to_lng: float) -> float:
    """
    Вычисляет расстояние между двумя точками (в км) по формуле Haversine.
    """
    dlat = math.radians(to_lat - from_lat)
    dlng = math.radians(to_lng - from_lng)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(from_lat)) * math.cos(math.radians(to_lat)) *
         math.sin(dlng / 2) ** 2)

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def is_valid_coordinate(lat: float, lng: float) -> bool:
    """Широта в [-90, 90], долгота в [-180, 180], без NaN и бесконечностей."""
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def bounding_box(lat: float, lng: float, radius_km: float) -> tuple[float, float, float, float]:
    """
    Прямоугольник вокруг точки для грубого отбора в SQL.

    Returns:
        (min_lat, max_lat, min_lng, max_lng)
    """
    lat_km = 110.574
    lng_km = 111.320 * math.cos(math.radians(lat))
    delta_lat = radius_km / lat_km
    delta_lng = radius_km / max(lng_km, 0.0001)
    return lat - delta_lat, lat + delta_lat, lng - delta_lng, lng + delta_lng
