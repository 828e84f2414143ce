# src/shared/__init__.py
"""
Общий код сервисов.

Модули:
- models: модели ответов API (ошибки, health check)
"""

__all__: list[str] = []
