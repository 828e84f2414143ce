# src/infra/dispatch_client.py
"""
HTTP клиент внешнего диспетчера.
Рассылает новые и отменённые заявки; вызывающий код не ждёт успеха.
"""

from __future__ import annotations

from typing import Any

import httpx

from src.common.errors import DispatchError
from src.common.logger import get_logger, log_error, log_info

logger = get_logger("dispatch")

DISPATCH_SECRET_HEADER = "X-DISPATCH-SECRET"
_ERROR_BODY_LIMIT = 500


class DispatchClient:
    """Клиент POST {base}/dispatch и {base}/dispatch/cancel."""

    def __init__(
        self,
        base_url: str,
        secret: str,
        *,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._secret = secret
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> None:
        if not self._base_url:
            raise DispatchError("Базовый URL диспетчера не настроен")

        url = f"{self._base_url}{path}"
        ride_request_id = payload.get("rideRequestId")
        await log_info(
            "Запрос к диспетчеру",
            logger_name="dispatch",
            extra={"path": path, "ride_request_id": ride_request_id},
        )

        try:
            response = await self._client.post(
                url,
                json=payload,
                headers={DISPATCH_SECRET_HEADER: self._secret},
            )
        except httpx.HTTPError as e:
            raise DispatchError(f"Диспетчер недоступен: {e}") from e

        if response.is_error:
            body = response.text[:_ERROR_BODY_LIMIT]
            await log_error(
                "Диспетчер вернул ошибку",
                logger_name="dispatch",
                extra={
                    "path": path,
                    "status": response.status_code,
                    "ride_request_id": ride_request_id,
                    "body": body,
                },
            )
            raise DispatchError(
                f"Запрос к диспетчеру не выполнен ({response.status_code}) {body}".strip(),
                status_code=response.status_code,
            )

    async def dispatch(
        self,
        *,
        ride_request_id: str,
        pickup_lat: float,
        pickup_lng: float,
        pickup_name: str | None = None,
        dropoff_name: str | None = None,
        dropoff_lat: float | None = None,
        dropoff_lng: float | None = None,
    ) -> None:
        """Рассылает новую заявку водителям через диспетчер."""
        await self._post("/dispatch", {
            "rideRequestId": ride_request_id,
            "pickupName": pickup_name,
            "pickupLat": pickup_lat,
            "pickupLng": pickup_lng,
            "dropoffName": dropoff_name,
            "dropoffLat": dropoff_lat,
            "dropoffLng": dropoff_lng,
        })

    async def cancel(self, ride_request_id: str) -> None:
        """Снимает заявку с рассылки."""
        await self._post("/dispatch/cancel", {"rideRequestId": ride_request_id})


def create_dispatch_client() -> DispatchClient:
    """Создаёт клиент диспетчера по настройкам."""
    from src.config import settings

    return DispatchClient(
        settings.dispatch.DISPATCH_BASE_URL,
        settings.dispatch.API_TO_DISPATCH_SECRET,
        timeout=settings.dispatch.DISPATCH_TIMEOUT,
    )
