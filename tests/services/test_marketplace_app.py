# tests/services/test_marketplace_app.py
"""
Тесты HTTP-слоя маркетплейса: авторизация, коды ошибок, лимиты, вебхук.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from src.common.constants import BookingStatus, OfferStatus, RideRequestStatus
from src.common.errors import ErrorKind, Failure, Result, WebhookPayloadError, WebhookSignatureError
from src.core.bookings.models import BookingRideResult
from src.core.payments.reconciliation import ReconcileOutcome
from src.core.ride_requests.models import DispatchAcceptResult, OfferActionResult, RideRequestPage
from src.infra.rate_limiter import RateLimitDecision
from src.services.marketplace import dependencies
from src.services.marketplace.app import app
from src.services.marketplace.errors import failure_to_http, unwrap

USER = {"X-User-Id": "driver-1"}


@pytest.fixture
def client() -> Iterator[TestClient]:
    """Клиент без lifespan: зависимости подменяются в каждом тесте."""
    app.dependency_overrides[dependencies.get_rate_limiter] = lambda: None
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def _override(getter, service) -> None:
    app.dependency_overrides[getter] = lambda: service


def _ride_body() -> dict:
    return {
        "from_city": "Toronto",
        "from_lat": 43.6532,
        "from_lng": -79.3832,
        "to_city": "Hamilton",
        "to_lat": 43.2557,
        "to_lng": -79.8711,
        "start_time": (datetime.now(timezone.utc) + timedelta(days=1)).isoformat(),
        "price_per_seat": 15.0,
        "seats_total": 4,
    }


class TestErrorMapping:
    @pytest.mark.parametrize(
        "kind, status_code",
        [
            (ErrorKind.VALIDATION, 400),
            (ErrorKind.INVALID_STATE, 400),
            (ErrorKind.FORBIDDEN, 403),
            (ErrorKind.NOT_FOUND, 404),
            (ErrorKind.CONFLICT, 409),
            (ErrorKind.UPSTREAM, 502),
        ],
    )
    def test_status_by_kind(self, kind: ErrorKind, status_code: int) -> None:
        assert failure_to_http(Failure(kind=kind, message="x")).status_code == status_code

    def test_details_without_nulls(self) -> None:
        exc = failure_to_http(Failure(
            kind=ErrorKind.INVALID_STATE,
            message="Недостаточно мест",
            details={"seats_available": 1, "requested": None},
        ))

        assert exc.detail == {
            "error_code": "invalid_state",
            "message": "Недостаточно мест",
            "details": {"seats_available": 1},
        }

    def test_unwrap(self) -> None:
        assert unwrap(Result.success(5)) == 5

        with pytest.raises(HTTPException) as exc_info:
            unwrap(Result.fail(ErrorKind.NOT_FOUND, "Поездка не найдена"))

        assert exc_info.value.status_code == 404

    def test_unwrap_marks_repeat(self, make_offer) -> None:
        offer = make_offer(status=OfferStatus.REJECTED)

        value = unwrap(Result.success(offer, idempotent=True), OfferActionResult)

        assert isinstance(value, OfferActionResult)
        assert value.id == "offer-1"
        assert value.idempotent is True


class TestAuth:
    def test_missing_user_header(self, client: TestClient) -> None:
        _override(dependencies.get_ride_service, AsyncMock())

        response = client.post("/rides", json=_ride_body())

        assert response.status_code == 401

    def test_blank_user_header(self, client: TestClient) -> None:
        _override(dependencies.get_ride_service, AsyncMock())

        response = client.get("/rides/me", headers={"X-User-Id": "  "})

        assert response.status_code == 401

    def test_dispatcher_secret_required(self, client: TestClient) -> None:
        service = AsyncMock()
        _override(dependencies.get_ride_request_service, service)
        app.dependency_overrides[dependencies.get_dispatch_secret] = lambda: "dispatch_secret"

        response = client.post(
            "/ride-requests/request-1/accept",
            json={"driver_id": "driver-1"},
            headers={"X-DISPATCH-SECRET": "wrong"},
        )

        assert response.status_code == 403
        service.accept_from_dispatcher.assert_not_awaited()

    def test_unset_secret_closes_callback(self, client: TestClient) -> None:
        _override(dependencies.get_ride_request_service, AsyncMock())
        app.dependency_overrides[dependencies.get_dispatch_secret] = lambda: ""

        response = client.post(
            "/ride-requests/request-1/accept",
            json={"driver_id": "driver-1"},
            headers={"X-DISPATCH-SECRET": ""},
        )

        assert response.status_code == 403

    def test_dispatcher_accept(self, client: TestClient) -> None:
        service = AsyncMock()
        service.accept_from_dispatcher.return_value = Result.success(DispatchAcceptResult(
            ride_request_id="request-1",
            status=RideRequestStatus.ACCEPTED,
            driver_id="driver-1",
        ))
        _override(dependencies.get_ride_request_service, service)
        app.dependency_overrides[dependencies.get_dispatch_secret] = lambda: "dispatch_secret"

        response = client.post(
            "/ride-requests/request-1/accept",
            json={"driver_id": "driver-1"},
            headers={"X-DISPATCH-SECRET": "dispatch_secret"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ACCEPTED"
        ride_request_id, dto = service.accept_from_dispatcher.call_args.args
        assert ride_request_id == "request-1"
        assert dto.driver_id == "driver-1"


class TestRoutes:
    def test_create_ride(self, client: TestClient, make_ride) -> None:
        service = AsyncMock()
        service.create.return_value = Result.success(make_ride())
        _override(dependencies.get_ride_service, service)

        response = client.post("/rides", json=_ride_body(), headers=USER)

        assert response.status_code == 201
        assert response.json()["id"] == "ride-1"
        assert service.create.call_args.args[0] == "driver-1"

    def test_validation_error(self, client: TestClient) -> None:
        _override(dependencies.get_ride_service, AsyncMock())
        body = _ride_body() | {"seats_total": 0}

        response = client.post("/rides", json=body, headers=USER)

        assert response.status_code == 422

    def test_domain_failure_body(self, client: TestClient) -> None:
        service = AsyncMock()
        service.confirm.return_value = Result.fail(
            ErrorKind.INVALID_STATE,
            "Недостаточно свободных мест",
            seats_available=1,
            seats_requested=2,
        )
        _override(dependencies.get_booking_service, service)

        response = client.put("/bookings/booking-1/confirm", headers=USER)

        assert response.status_code == 400
        assert response.json()["detail"] == {
            "error_code": "invalid_state",
            "message": "Недостаточно свободных мест",
            "details": {"seats_available": 1, "seats_requested": 2},
        }

    def test_repeat_confirm_is_idempotent(self, client: TestClient, make_booking, make_ride) -> None:
        service = AsyncMock()
        service.confirm.return_value = Result.success(
            BookingRideResult(booking=make_booking(status=BookingStatus.ACCEPTED), ride=make_ride()),
            idempotent=True,
        )
        _override(dependencies.get_booking_service, service)

        response = client.put("/bookings/booking-1/confirm", headers=USER)

        assert response.status_code == 200
        assert response.json()["idempotent"] is True
        assert response.json()["booking"]["status"] == "accepted"

    def test_first_confirm_not_idempotent(self, client: TestClient, make_booking, make_ride) -> None:
        service = AsyncMock()
        service.confirm.return_value = Result.success(
            BookingRideResult(booking=make_booking(status=BookingStatus.ACCEPTED), ride=make_ride())
        )
        _override(dependencies.get_booking_service, service)

        response = client.put("/bookings/booking-1/confirm", headers=USER)

        assert response.status_code == 200
        assert response.json()["idempotent"] is False

    def test_repeat_request_cancel_is_idempotent(self, client: TestClient, make_request) -> None:
        service = AsyncMock()
        service.cancel.return_value = Result.success(
            make_request(status=RideRequestStatus.CANCELLED), idempotent=True
        )
        _override(dependencies.get_ride_request_service, service)

        response = client.post("/ride-requests/request-1/cancel", headers=USER)

        assert response.status_code == 200
        assert response.json()["id"] == "request-1"
        assert response.json()["status"] == "CANCELLED"
        assert response.json()["idempotent"] is True

    def test_repeat_offer_reject_is_idempotent(self, client: TestClient, make_offer) -> None:
        service = AsyncMock()
        service.reject.return_value = Result.success(make_offer(status=OfferStatus.REJECTED), idempotent=True)
        _override(dependencies.get_offer_service, service)

        response = client.put("/ride-requests/request-1/offers/offer-1/reject", headers=USER)

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        assert response.json()["idempotent"] is True

    def test_offer_cancel_not_idempotent(self, client: TestClient, make_offer) -> None:
        service = AsyncMock()
        service.cancel.return_value = Result.success(make_offer(status=OfferStatus.CANCELLED))
        _override(dependencies.get_offer_service, service)

        response = client.put("/ride-requests/request-1/offers/offer-1/cancel", headers=USER)

        assert response.status_code == 200
        assert response.json()["idempotent"] is False

    def test_search_ride_requests(self, client: TestClient, make_request) -> None:
        service = AsyncMock()
        service.search.return_value = Result.success(RideRequestPage(requests=[make_request()], next_cursor=None))
        _override(dependencies.get_ride_request_service, service)

        response = client.get(
            "/ride-requests",
            params={"from_city": "tor", "lat": 43.65, "lng": -79.38, "status": "PENDING", "limit": 10},
            headers=USER,
        )

        assert response.status_code == 200
        assert response.json()["requests"][0]["id"] == "request-1"
        query = service.search.call_args.args[0]
        assert query.from_city == "tor"
        assert query.status == RideRequestStatus.PENDING
        assert query.radius_km == 25.0
        assert query.limit == 10

    def test_search_bad_coordinates_is_400(self, client: TestClient) -> None:
        service = AsyncMock()
        service.search.return_value = Result.fail(ErrorKind.VALIDATION, "lat и lng передаются вместе")
        _override(dependencies.get_ride_request_service, service)

        response = client.get("/ride-requests", params={"lat": 43.65}, headers=USER)

        assert response.status_code == 400

    def test_unhandled_error_is_500(self, client: TestClient) -> None:
        service = AsyncMock()
        service.list_mine.side_effect = RuntimeError("boom")
        _override(dependencies.get_ride_service, service)

        with patch("src.services.marketplace.app.log_error", new_callable=AsyncMock):
            response = client.get("/rides/me", headers=USER)

        assert response.status_code == 500
        assert response.json()["detail"]["error_code"] == "internal"


class TestRateLimit:
    def test_too_many_requests(self, client: TestClient) -> None:
        limiter = AsyncMock()
        limiter.hit.return_value = RateLimitDecision(allowed=False, retry_after=30)
        app.dependency_overrides[dependencies.get_rate_limiter] = lambda: limiter
        service = AsyncMock()
        _override(dependencies.get_ride_service, service)

        response = client.get("/rides/me", headers={**USER, "X-Forwarded-For": "10.0.0.1"})

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "30"
        limiter.hit.assert_awaited_once_with("10.0.0.1")
        service.list_mine.assert_not_awaited()

    def test_webhook_not_limited(self, client: TestClient) -> None:
        limiter = AsyncMock()
        limiter.hit.return_value = RateLimitDecision(allowed=False, retry_after=30)
        app.dependency_overrides[dependencies.get_rate_limiter] = lambda: limiter
        gateway = MagicMock()
        gateway.parse_webhook.return_value = {"type": "customer.created"}
        reconciler = AsyncMock()
        reconciler.handle_event.return_value = ReconcileOutcome.IGNORED
        _override(dependencies.get_gateway, gateway)
        _override(dependencies.get_reconciler, reconciler)

        response = client.post("/webhooks/payments", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})

        assert response.status_code == 200
        limiter.hit.assert_not_awaited()


class TestWebhook:
    @pytest.fixture
    def gateway(self) -> MagicMock:
        gateway = MagicMock()
        gateway.parse_webhook.return_value = {"id": "evt_1", "type": "payment_intent.succeeded"}
        _override(dependencies.get_gateway, gateway)
        return gateway

    @pytest.fixture
    def reconciler(self) -> AsyncMock:
        reconciler = AsyncMock()
        reconciler.handle_event.return_value = ReconcileOutcome.APPLIED
        _override(dependencies.get_reconciler, reconciler)
        return reconciler

    def test_raw_body_passed_to_signature_check(self, client, gateway, reconciler) -> None:
        response = client.post(
            "/webhooks/payments",
            content=b'{"id": "evt_1"}',
            headers={"Stripe-Signature": "t=1,v1=abc"},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True, "outcome": "applied"}
        gateway.parse_webhook.assert_called_once_with(b'{"id": "evt_1"}', "t=1,v1=abc")

    def test_bad_signature(self, client, gateway, reconciler) -> None:
        gateway.parse_webhook.side_effect = WebhookSignatureError("bad signature")

        with patch("src.services.marketplace.routes.webhooks.log_warning", new_callable=AsyncMock):
            response = client.post("/webhooks/payments", content=b"{}")

        assert response.status_code == 400
        reconciler.handle_event.assert_not_awaited()

    def test_bad_payload(self, client, gateway, reconciler) -> None:
        reconciler.handle_event.side_effect = WebhookPayloadError("Нет id PaymentIntent")

        response = client.post("/webhooks/payments", content=b"{}", headers={"Stripe-Signature": "s"})

        assert response.status_code == 400


class TestHealth:
    def test_healthy(self, client: TestClient) -> None:
        db = MagicMock()
        db.health_check = AsyncMock(return_value=True)
        redis = MagicMock()
        redis.health_check = AsyncMock(return_value=True)

        with patch.object(dependencies, "get_db", return_value=db), \
                patch.object(dependencies, "get_redis", return_value=redis):
            response = client.get("/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["dependencies"] == {"postgres": "healthy", "redis": "healthy"}

    def test_degraded_when_not_initialized(self, client: TestClient) -> None:
        with patch.object(dependencies, "get_db", side_effect=RuntimeError("нет пула")), \
                patch.object(dependencies, "get_redis", side_effect=RuntimeError("нет клиента")):
            response = client.get("/health")

        assert response.json()["status"] == "degraded"
