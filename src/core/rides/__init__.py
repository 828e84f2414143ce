# src/core/rides/__init__.py
"""
Домен поездок.
Поездки водителей и учёт свободных мест.
Сервис импортируется из src.core.rides.service.
"""

from src.core.rides.models import Ride, RideCreateDTO, RideUpdateDTO
from src.core.rides.repository import RideRepository

__all__ = [
    "Ride",
    "RideCreateDTO",
    "RideUpdateDTO",
    "RideRepository",
]
