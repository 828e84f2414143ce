# src/services/marketplace/rate_limit.py
"""
Зависимость ограничения частоты запросов.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status

from src.infra.rate_limiter import RateLimiter, client_key_from_headers
from src.services.marketplace.dependencies import get_rate_limiter


async def enforce_rate_limit(
    request: Request,
    limiter: Annotated[Optional[RateLimiter], Depends(get_rate_limiter)],
) -> None:
    """429 с Retry-After, если клиент исчерпал лимит окна."""
    if limiter is None:
        return

    client_key = client_key_from_headers(
        request.headers.get("x-forwarded-for"),
        request.client.host if request.client else None,
    )
    decision = await limiter.hit(client_key)
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Слишком много запросов",
            headers={"Retry-After": str(decision.retry_after)},
        )
