# src/common/constants.py
"""
Общие константы и перечисления маркетплейса поездок.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class RideStatus(str, Enum):
    """Статусы поездки водителя."""
    OPEN = "open"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingStatus(str, Enum):
    """Статусы бронирования."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    PAYMENT_PENDING = "payment_pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED_BY_PASSENGER = "cancelled_by_passenger"
    CANCELLED_BY_DRIVER = "cancelled_by_driver"


class BookingPaymentStatus(str, Enum):
    """Статус оплаты на стороне бронирования."""
    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    # Историческое значение, встречается в старых записях
    SUCCEEDED = "succeeded"


class PaymentStatus(str, Enum):
    """Статусы локальной записи платежа."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class RideRequestStatus(str, Enum):
    """Статусы заявки пассажира."""
    PENDING = "PENDING"
    OFFERING = "OFFERING"
    ACCEPTED = "ACCEPTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class RideRequestMode(str, Enum):
    """Режим заявки: обычные предложения или оплата заранее (JIT)."""
    OFFER = "OFFER"
    JIT = "JIT"


class OfferStatus(str, Enum):
    """Статусы предложения водителя."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class RefundSource(str, Enum):
    """Источник возврата средств (входит в ключ идемпотентности)."""
    PASSENGER_CANCEL_BOOKING = "passenger_cancel_booking"
    DRIVER_CANCEL_BOOKING = "driver_cancel_booking"
    DRIVER_CANCEL_RIDE = "driver_cancel_ride"
    PASSENGER_CANCEL_RIDE_REQUEST = "passenger_cancel_ride_request"


# Статусы бронирования, удерживающие места в поездке
SEAT_HOLDING_BOOKING_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.ACCEPTED,
    BookingStatus.PAYMENT_PENDING,
    BookingStatus.CONFIRMED,
})

TERMINAL_BOOKING_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED_BY_PASSENGER,
    BookingStatus.CANCELLED_BY_DRIVER,
})

ACTIVE_RIDE_REQUEST_STATUSES: frozenset[RideRequestStatus] = frozenset({
    RideRequestStatus.PENDING,
    RideRequestStatus.OFFERING,
})

TERMINAL_RIDE_REQUEST_STATUSES: frozenset[RideRequestStatus] = frozenset({
    RideRequestStatus.ACCEPTED,
    RideRequestStatus.CANCELLED,
    RideRequestStatus.EXPIRED,
})

PAID_BOOKING_PAYMENT_STATUSES: frozenset[str] = frozenset({
    BookingPaymentStatus.PAID.value,
    BookingPaymentStatus.SUCCEEDED.value,
})
