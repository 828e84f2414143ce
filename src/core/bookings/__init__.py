# src/core/bookings/__init__.py
"""
Домен бронирований.
Сервис импортируется из src.core.bookings.service.
"""

from src.core.bookings.models import Booking, BookingCreateDTO
from src.core.bookings.repository import BookingRepository
from src.core.bookings.state_machine import BookingStateMachine

__all__ = [
    "Booking",
    "BookingCreateDTO",
    "BookingRepository",
    "BookingStateMachine",
]
