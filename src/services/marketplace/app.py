# src/services/marketplace/app.py
"""
FastAPI приложение маркетплейса поездок.

Поездки водителей, бронирования, заявки пассажиров с предложениями,
JIT-оплата и вебхук платёжного провайдера.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, setup_logging
from src.config import settings
from src.services.marketplace.rate_limit import enforce_rate_limit
from src.services.marketplace.routes import (
    bookings_router,
    payments_router,
    ride_requests_router,
    rides_router,
    webhooks_router,
)
from src.shared.models.common import ErrorResponse, HealthStatus


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Жизненный цикл приложения."""
    from src.infra.database import close_db, init_db
    from src.infra.dispatch_client import create_dispatch_client
    from src.infra.event_bus import close_event_bus, init_event_bus
    from src.infra.payment_gateway import create_payment_gateway
    from src.infra.redis_client import close_redis, init_redis
    from src.services.marketplace.dependencies import close_dependencies, init_dependencies

    setup_logging()
    await log_info("Marketplace API запускается...", type_msg=TypeMsg.INFO)

    db = await init_db()
    redis = await init_redis()
    event_bus = await init_event_bus()

    dispatch = create_dispatch_client() if settings.dispatch.enabled else None
    if dispatch is None:
        await log_info("Диспетчер не настроен, рассылка заявок отключена", type_msg=TypeMsg.WARNING)

    await init_dependencies(
        db=db,
        redis=redis,
        event_bus=event_bus,
        gateway=create_payment_gateway(),
        dispatch=dispatch,
        config=settings,
    )

    yield

    await close_dependencies()
    await close_event_bus()
    await close_redis()
    await close_db()
    await log_info("Marketplace API остановлен", type_msg=TypeMsg.INFO)


# =============================================================================
# ПРИЛОЖЕНИЕ
# =============================================================================

app = FastAPI(
    title="Ridepool Marketplace",
    description="Маркетплейс совместных поездок между городами",
    version=settings.system.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_limited = [Depends(enforce_rate_limit)]
app.include_router(rides_router, dependencies=_limited)
app.include_router(bookings_router, dependencies=_limited)
app.include_router(ride_requests_router, dependencies=_limited)
app.include_router(payments_router, dependencies=_limited)
app.include_router(webhooks_router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Непредвиденные ошибки: лог с трассировкой и общий ответ 500."""
    await log_error(
        f"Необработанная ошибка {request.method} {request.url.path}: {exc}",
        logger_name="marketplace",
        extra={"error_type": type(exc).__name__},
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": ErrorResponse(
                error_code="internal",
                message="Внутренняя ошибка сервера",
            ).model_dump(exclude_none=True),
        },
    )


# =============================================================================
# HEALTH CHECK
# =============================================================================

@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса."""
    from src.services.marketplace.dependencies import get_db, get_redis

    deps = {}

    try:
        deps["postgres"] = "healthy" if await get_db().health_check() else "unhealthy"
    except RuntimeError:
        deps["postgres"] = "unhealthy"

    try:
        deps["redis"] = "healthy" if await get_redis().health_check() else "unhealthy"
    except RuntimeError:
        deps["redis"] = "unhealthy"

    overall = "healthy" if all(v == "healthy" for v in deps.values()) else "degraded"

    return HealthStatus(
        service="marketplace",
        status=overall,
        version=settings.system.VERSION,
        dependencies=deps,
    )
