# src/core/payments/__init__.py
"""
Домен платежей: намерения оплаты, возвраты и свёртка событий провайдера.
Сервисы импортируются из модулей service, refunds и reconciliation.
"""

from src.core.payments.models import Payment, map_intent_status
from src.core.payments.repository import PaymentRepository

__all__ = [
    "Payment",
    "map_intent_status",
    "PaymentRepository",
]
