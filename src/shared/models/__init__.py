# src/shared/models/__init__.py
"""
Общие модели ответов API и типы полей.
"""

from src.shared.models.common import ErrorResponse, HealthStatus, UtcDatetime, as_utc

__all__ = [
    "ErrorResponse",
    "HealthStatus",
    "UtcDatetime",
    "as_utc",
]
