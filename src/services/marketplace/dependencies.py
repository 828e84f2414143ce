# src/services/marketplace/dependencies.py
"""
Зависимости для API маркетплейса.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from src.common.constants import TypeMsg
from src.common.logger import log_info

if TYPE_CHECKING:
    from src.config.loader import Settings
    from src.core.bookings.service import BookingService
    from src.core.jit.service import JitIntentService
    from src.core.payments.reconciliation import PaymentReconciler
    from src.core.payments.service import PaymentService
    from src.core.ride_requests.offers import OfferService
    from src.core.ride_requests.service import RideRequestService
    from src.core.rides.service import RideService
    from src.infra.database import DatabaseManager
    from src.infra.dispatch_client import DispatchClient
    from src.infra.event_bus import EventBus
    from src.infra.payment_gateway import PaymentGateway
    from src.infra.rate_limiter import RateLimiter
    from src.infra.redis_client import RedisClient


_db: Optional["DatabaseManager"] = None
_redis: Optional["RedisClient"] = None
_gateway: Optional["PaymentGateway"] = None
_dispatch: Optional["DispatchClient"] = None
_rate_limiter: Optional["RateLimiter"] = None
_dispatch_secret: str = ""

_ride_service: Optional["RideService"] = None
_booking_service: Optional["BookingService"] = None
_ride_request_service: Optional["RideRequestService"] = None
_offer_service: Optional["OfferService"] = None
_jit_service: Optional["JitIntentService"] = None
_payment_service: Optional["PaymentService"] = None
_reconciler: Optional["PaymentReconciler"] = None


async def init_dependencies(
    *,
    db: "DatabaseManager",
    redis: "RedisClient",
    event_bus: "EventBus",
    gateway: "PaymentGateway",
    dispatch: Optional["DispatchClient"],
    config: "Settings",
) -> None:
    """Собирает сервисы поверх подключённой инфраструктуры."""
    global _db, _redis, _gateway, _dispatch, _rate_limiter, _dispatch_secret
    global _ride_service, _booking_service, _ride_request_service, _offer_service
    global _jit_service, _payment_service, _reconciler

    from src.core.bookings.service import BookingService
    from src.core.jit.service import JitIntentService
    from src.core.notifications.service import NotificationService
    from src.core.payments.reconciliation import PaymentReconciler
    from src.core.payments.refunds import RefundService
    from src.core.payments.repository import PaymentRepository
    from src.core.payments.service import PaymentService
    from src.core.pricing.repository import FixedRoutePriceRepository
    from src.core.pricing.resolver import SeatPriceResolver
    from src.core.ride_requests.broadcast import RideRequestBroadcaster
    from src.core.ride_requests.offers import OfferService
    from src.core.ride_requests.service import RideRequestService
    from src.core.rides.service import RideService
    from src.infra.rate_limiter import RateLimiter

    _db = db
    _redis = redis
    _gateway = gateway
    _dispatch = dispatch
    _dispatch_secret = config.dispatch.DISPATCH_TO_API_SECRET

    if config.rate_limit.RATE_LIMIT_ENABLED:
        _rate_limiter = RateLimiter(
            redis,
            window_seconds=config.rate_limit.RATE_LIMIT_WINDOW_SECONDS,
            max_requests=config.rate_limit.RATE_LIMIT_MAX_REQUESTS,
        )

    rules = config.pricing
    fee_pct = config.stripe.STRIPE_PLATFORM_FEE_PCT
    currency = config.stripe.STRIPE_CURRENCY

    resolver = SeatPriceResolver(
        FixedRoutePriceRepository(db, redis, cache_ttl=rules.FIXED_ROUTE_CACHE_TTL),
        rules,
    )
    refunds = RefundService(gateway, PaymentRepository(db))
    notifications = NotificationService(event_bus)
    broadcaster = RideRequestBroadcaster(dispatch, event_bus)

    _ride_service = RideService(db, resolver, refunds, notifications)
    _booking_service = BookingService(db, refunds, notifications)
    _ride_request_service = RideRequestService(
        db,
        broadcaster,
        refunds,
        rules,
        platform_fee_pct=fee_pct,
        currency=currency,
    )
    _offer_service = OfferService(db, notifications)
    _jit_service = JitIntentService(gateway, resolver, rules, currency=currency)
    _payment_service = PaymentService(db, gateway, rules, platform_fee_pct=fee_pct, currency=currency)
    _reconciler = PaymentReconciler(db, broadcaster, event_bus, default_currency=currency)

    await log_info("Marketplace API инициализирован", type_msg=TypeMsg.INFO, logger_name="marketplace")


async def close_dependencies() -> None:
    """Закрывает клиенты, созданные для API."""
    global _dispatch

    if _dispatch is not None:
        await _dispatch.close()
        _dispatch = None
        await log_info("Клиент диспетчера закрыт", type_msg=TypeMsg.DEBUG, logger_name="marketplace")


def get_db() -> "DatabaseManager":
    if _db is None:
        raise RuntimeError("DatabaseManager не инициализирован")
    return _db


def get_redis() -> "RedisClient":
    if _redis is None:
        raise RuntimeError("RedisClient не инициализирован")
    return _redis


def get_gateway() -> "PaymentGateway":
    if _gateway is None:
        raise RuntimeError("PaymentGateway не инициализирован")
    return _gateway


def get_rate_limiter() -> Optional["RateLimiter"]:
    """Ограничитель частоты; None, если ограничение выключено."""
    return _rate_limiter


def get_dispatch_secret() -> str:
    return _dispatch_secret


def get_ride_service() -> "RideService":
    if _ride_service is None:
        raise RuntimeError("RideService не инициализирован")
    return _ride_service


def get_booking_service() -> "BookingService":
    if _booking_service is None:
        raise RuntimeError("BookingService не инициализирован")
    return _booking_service


def get_ride_request_service() -> "RideRequestService":
    if _ride_request_service is None:
        raise RuntimeError("RideRequestService не инициализирован")
    return _ride_request_service


def get_offer_service() -> "OfferService":
    if _offer_service is None:
        raise RuntimeError("OfferService не инициализирован")
    return _offer_service


def get_jit_service() -> "JitIntentService":
    if _jit_service is None:
        raise RuntimeError("JitIntentService не инициализирован")
    return _jit_service


def get_payment_service() -> "PaymentService":
    if _payment_service is None:
        raise RuntimeError("PaymentService не инициализирован")
    return _payment_service


def get_reconciler() -> "PaymentReconciler":
    if _reconciler is None:
        raise RuntimeError("PaymentReconciler не инициализирован")
    return _reconciler
