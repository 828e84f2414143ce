# src/core/bookings/state_machine.py
"""
Допустимые переходы статусов бронирования.
"""

from __future__ import annotations

from src.common.constants import BookingStatus

_CANCELLED = [BookingStatus.CANCELLED_BY_PASSENGER, BookingStatus.CANCELLED_BY_DRIVER]


class BookingStateMachine:
    ALLOWED_TRANSITIONS: dict[BookingStatus, list[BookingStatus]] = {
        BookingStatus.PENDING: [BookingStatus.ACCEPTED, *_CANCELLED],
        BookingStatus.ACCEPTED: [
            BookingStatus.PAYMENT_PENDING,
            BookingStatus.CONFIRMED,
            BookingStatus.COMPLETED,
            *_CANCELLED,
        ],
        BookingStatus.PAYMENT_PENDING: [
            BookingStatus.CONFIRMED,
            # оплата не прошла, пассажир может повторить
            BookingStatus.ACCEPTED,
            BookingStatus.COMPLETED,
            *_CANCELLED,
        ],
        BookingStatus.CONFIRMED: [BookingStatus.COMPLETED, *_CANCELLED],
        BookingStatus.COMPLETED: [],
        BookingStatus.CANCELLED_BY_PASSENGER: [],
        BookingStatus.CANCELLED_BY_DRIVER: [],
    }

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            curr = BookingStatus(current_status)
            new = BookingStatus(new_status)
        except ValueError:
            return False
        return new in BookingStateMachine.ALLOWED_TRANSITIONS.get(curr, [])

    @staticmethod
    def sources_for(new_status: BookingStatus) -> tuple[BookingStatus, ...]:
        """Все статусы, из которых разрешён переход в new_status."""
        return tuple(
            status
            for status, targets in BookingStateMachine.ALLOWED_TRANSITIONS.items()
            if new_status in targets
        )
