# src/services/marketplace/auth.py
"""
Аутентификация запросов к API маркетплейса.

Пользователь определяется шлюзом перед API и передаётся в заголовке
X-User-Id. Обратные вызовы диспетчера подписаны общим секретом.
"""

from __future__ import annotations

import hmac
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status

from src.services.marketplace.dependencies import get_dispatch_secret


async def get_current_user_id(
    x_user_id: Annotated[Optional[str], Header(alias="X-User-Id")] = None,
) -> str:
    """Идентификатор пользователя из заголовка X-User-Id."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Требуется авторизация",
        )
    return x_user_id.strip()


async def verify_dispatch_secret(
    secret: Annotated[str, Depends(get_dispatch_secret)],
    x_dispatch_secret: Annotated[Optional[str], Header(alias="X-DISPATCH-SECRET")] = None,
) -> None:
    """Проверяет общий секрет диспетчера; без настроенного секрета доступ закрыт."""
    if not secret or not x_dispatch_secret or not hmac.compare_digest(
        x_dispatch_secret.encode("utf-8"),
        secret.encode("utf-8"),
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Неверный секрет диспетчера",
        )


CurrentUser = Annotated[str, Depends(get_current_user_id)]
