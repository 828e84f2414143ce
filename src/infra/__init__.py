# src/infra/__init__.py
"""
Инфраструктурный слой.
PostgreSQL, Redis, RabbitMQ, платёжный провайдер и внешний диспетчер.
"""

from src.infra.database import DatabaseManager, get_db
from src.infra.dispatch_client import DispatchClient
from src.infra.event_bus import DomainEvent, EventBus, EventTypes, get_event_bus
from src.infra.payment_gateway import IntentInfo, PaymentGateway, RefundInfo
from src.infra.rate_limiter import RateLimiter
from src.infra.redis_client import RedisClient, get_redis

__all__ = [
    "DatabaseManager",
    "get_db",
    "DispatchClient",
    "DomainEvent",
    "EventBus",
    "EventTypes",
    "get_event_bus",
    "IntentInfo",
    "PaymentGateway",
    "RefundInfo",
    "RateLimiter",
    "RedisClient",
    "get_redis",
]
