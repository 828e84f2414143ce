# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncGenerator, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("DISPATCH_TO_API_SECRET", "dispatch_secret")

from src.common.constants import (  # noqa: E402
    BookingPaymentStatus,
    BookingStatus,
    OfferStatus,
    PaymentStatus,
    RideRequestMode,
    RideRequestStatus,
    RideStatus,
)
from src.config.loader import PricingSettings  # noqa: E402
from src.core.bookings.models import Booking  # noqa: E402
from src.core.payments.models import Payment  # noqa: E402
from src.core.ride_requests.models import RideRequest, RideRequestOffer  # noqa: E402
from src.core.rides.models import Ride  # noqa: E402

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "PROJECT_NAME": "ridepool_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "LOG_TO_FILE": False,
        "LOG_FORMAT": "colored",
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "ridepool_test",
        "DB_USER": "postgres",
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_NAMESPACE": "ridepool_test",
        "RABBITMQ_EXCHANGE": "ridepool.test",
        "STRIPE_CURRENCY": "CAD",
        "JIT_BASE_PRICE_PER_SEAT": 20.0,
        "JIT_WINDOW_HOURS": 2.0,
        "RATE_LIMIT_MAX_REQUESTS": 5,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


@pytest.fixture
def pricing_rules() -> PricingSettings:
    """Правила цен по умолчанию."""
    return PricingSettings()


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_conn() -> AsyncMock:
    """Мок соединения внутри транзакции."""
    conn = AsyncMock()
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.execute = AsyncMock(return_value="UPDATE 0")
    return conn


@pytest.fixture
def mock_db(mock_conn: AsyncMock) -> MagicMock:
    """Мок менеджера базы данных; transaction() отдаёт mock_conn."""
    db = MagicMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    db.health_check = AsyncMock(return_value=True)

    @asynccontextmanager
    async def transaction() -> AsyncGenerator[AsyncMock, None]:
        yield mock_conn

    db.transaction = transaction
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.get_model = AsyncMock(return_value=None)
    redis.set_model = AsyncMock(return_value=True)
    redis.incr_with_ttl = AsyncMock(return_value=(1, 60))
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=True)
    event_bus.is_connected = True
    return event_bus


@pytest.fixture
def mock_notifications() -> AsyncMock:
    """Мок сервиса уведомлений."""
    notifications = AsyncMock()
    notifications.notify = AsyncMock(return_value=True)
    notifications.notify_many = AsyncMock(return_value=None)
    return notifications


@pytest.fixture
def mock_refunds() -> AsyncMock:
    """Мок сервиса возвратов."""
    return AsyncMock()


# =============================================================================
# ФАБРИКИ МОДЕЛЕЙ
# =============================================================================

@pytest.fixture
def make_ride() -> Callable[..., Ride]:
    """Фабрика поездок: открытая поездка Toronto -> Hamilton на 4 места."""
    def factory(**overrides: Any) -> Ride:
        data: dict[str, Any] = {
            "id": "ride-1",
            "driver_id": "driver-1",
            "from_city": "Toronto",
            "from_lat": 43.6532,
            "from_lng": -79.3832,
            "to_city": "Hamilton",
            "to_lat": 43.2557,
            "to_lng": -79.8711,
            "start_time": NOW + timedelta(days=1),
            "price_per_seat": 15.0,
            "seats_total": 4,
            "seats_available": 4,
            "status": RideStatus.OPEN,
        }
        data.update(overrides)
        return Ride.model_validate(data)
    return factory


@pytest.fixture
def make_booking() -> Callable[..., Booking]:
    """Фабрика бронирований: ожидающее бронирование на 2 места."""
    def factory(**overrides: Any) -> Booking:
        data: dict[str, Any] = {
            "id": "booking-1",
            "ride_id": "ride-1",
            "passenger_id": "passenger-1",
            "seats_booked": 2,
            "status": BookingStatus.PENDING,
            "payment_status": BookingPaymentStatus.UNPAID,
        }
        data.update(overrides)
        return Booking.model_validate(data)
    return factory


@pytest.fixture
def make_payment() -> Callable[..., Payment]:
    def factory(**overrides: Any) -> Payment:
        data: dict[str, Any] = {
            "id": "payment-1",
            "booking_id": "booking-1",
            "payment_intent_id": "pi_1",
            "amount_cents": 3000,
            "platform_fee_cents": 300,
            "currency": "cad",
            "status": PaymentStatus.PENDING,
        }
        data.update(overrides)
        return Payment.model_validate(data)
    return factory


@pytest.fixture
def make_request() -> Callable[..., RideRequest]:
    """Фабрика заявок: заявка OFFER на 2 места через три дня."""
    def factory(**overrides: Any) -> RideRequest:
        data: dict[str, Any] = {
            "id": "request-1",
            "passenger_id": "passenger-1",
            "mode": RideRequestMode.OFFER,
            "status": RideRequestStatus.OFFERING,
            "from_city": "Toronto",
            "from_lat": 43.6532,
            "from_lng": -79.3832,
            "to_city": "Hamilton",
            "to_lat": 43.2557,
            "to_lng": -79.8711,
            "preferred_date": NOW + timedelta(days=3),
            "seats_needed": 2,
            "ride_type": "shared",
            "trip_type": "one_way",
        }
        data.update(overrides)
        return RideRequest.model_validate(data)
    return factory


@pytest.fixture
def make_offer() -> Callable[..., RideRequestOffer]:
    def factory(**overrides: Any) -> RideRequestOffer:
        data: dict[str, Any] = {
            "id": "offer-1",
            "ride_request_id": "request-1",
            "driver_id": "driver-1",
            "ride_id": "ride-1",
            "seats_offered": 2,
            "price_per_seat": 15.0,
            "status": OfferStatus.PENDING,
        }
        data.update(overrides)
        return RideRequestOffer.model_validate(data)
    return factory
