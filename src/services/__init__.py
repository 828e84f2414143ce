# src/services/__init__.py
"""
HTTP сервисы приложения.

Сервисы:
- marketplace: API поездок, бронирований, заявок и платежей
"""

__all__: list[str] = []
