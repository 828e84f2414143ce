# tests/core/test_jit.py
"""
Тесты для создания JIT-намерения оплаты.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from src.common.errors import ErrorKind, PaymentProviderError
from src.config.loader import PricingSettings
from src.core.jit.service import JitIntentService, jit_intent_key
from src.core.pricing.resolver import SeatPriceResolver
from src.core.ride_requests.models import JIT_FLOW, JitIntentCreateDTO, JitRequestDraft
from src.infra.payment_gateway import IntentInfo

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
LAT_10KM = 43.0 + math.degrees(10 / 6371.0)


def _dto(hours_ahead: float = 1, **overrides) -> JitIntentCreateDTO:
    data = {
        "from_city": "Mississauga",
        "from_lat": 43.0,
        "from_lng": -79.0,
        "to_city": "Brampton",
        "to_lat": LAT_10KM,
        "to_lng": -79.0,
        "preferred_date": NOW + timedelta(hours=hours_ahead),
        "seats_needed": 2,
        "ride_type": "shared",
        "trip_type": "one_way",
    }
    data.update(overrides)
    return JitIntentCreateDTO(**data)


@pytest.fixture
def gateway() -> AsyncMock:
    gateway = AsyncMock()
    gateway.create_intent = AsyncMock(return_value=IntentInfo(
        id="pi_jit",
        status="requires_payment_method",
        amount=600,
        currency="cad",
        client_secret="pi_jit_secret",
    ))
    return gateway


@pytest.fixture
def service(gateway) -> JitIntentService:
    fixed_routes = AsyncMock()
    fixed_routes.get_active_price = AsyncMock(return_value=None)
    rules = PricingSettings()
    return JitIntentService(gateway, SeatPriceResolver(fixed_routes, rules), rules, currency="cad")


class TestJitIntentKey:
    def test_same_params_same_key(self) -> None:
        metadata = {"flow": JIT_FLOW, "seatsNeeded": "2"}

        assert jit_intent_key("p1", 600, "cad", metadata) == jit_intent_key("p1", 600, "cad", dict(metadata))

    def test_key_depends_on_amount(self) -> None:
        metadata = {"flow": JIT_FLOW}

        assert jit_intent_key("p1", 600, "cad", metadata) != jit_intent_key("p1", 700, "cad", metadata)

    def test_key_format(self) -> None:
        key = jit_intent_key("p1", 600, "cad", {})

        prefix, passenger, digest = key.split(":")
        assert (prefix, passenger) == ("jit", "p1")
        assert len(digest) == 64


class TestCreateJitIntent:
    """Цена: база 20, наценка 1.3, потолок 0.3 за км на 10 км = 3 за место."""

    @pytest.mark.asyncio
    async def test_amount_for_two_seats(self, service, gateway) -> None:
        result = await service.create_intent("passenger-1", _dto(), now=NOW)

        assert result.ok
        assert result.value.client_secret == "pi_jit_secret"
        assert result.value.quoted_price_per_seat == 3.0
        kwargs = gateway.create_intent.call_args.kwargs
        assert kwargs["amount_cents"] == 600
        assert kwargs["currency"] == "cad"
        assert kwargs["metadata"]["flow"] == JIT_FLOW
        assert kwargs["metadata"]["quotedPricePerSeat"] == "3.00"
        assert kwargs["idempotency_key"].startswith("jit:passenger-1:")

    @pytest.mark.asyncio
    async def test_metadata_round_trips_to_draft(self, service, gateway) -> None:
        await service.create_intent("passenger-1", _dto(), now=NOW)

        draft = JitRequestDraft.model_validate(gateway.create_intent.call_args.kwargs["metadata"])
        assert draft.passenger_id == "passenger-1"
        assert draft.seats_needed == 2
        assert draft.return_date is None
        assert draft.quoted_price_per_seat == 3.0


    @pytest.mark.asyncio
    async def test_naive_date_is_utc(self, service, gateway) -> None:
        """Дата без часового пояса считается UTC."""
        dto = _dto(preferred_date="2026-05-01T13:00:00")

        result = await service.create_intent("passenger-1", dto, now=NOW)

        assert dto.preferred_date.tzinfo == timezone.utc
        assert result.ok
        assert gateway.create_intent.call_args.kwargs["amount_cents"] == 600
    @pytest.mark.asyncio
    async def test_outside_window(self, service, gateway) -> None:
        result = await service.create_intent("passenger-1", _dto(hours_ahead=3), now=NOW)

        assert result.error.kind == ErrorKind.VALIDATION
        gateway.create_intent.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_past_departure(self, service) -> None:
        result = await service.create_intent("passenger-1", _dto(hours_ahead=-1), now=NOW)

        assert result.error.kind == ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_zero_distance_gives_zero_amount(self, service, gateway) -> None:
        result = await service.create_intent(
            "passenger-1",
            _dto(to_lat=43.0),
            now=NOW,
        )

        assert result.error.kind == ErrorKind.VALIDATION
        gateway.create_intent.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_error(self, service, gateway) -> None:
        gateway.create_intent.side_effect = PaymentProviderError("card_declined")

        result = await service.create_intent("passenger-1", _dto(), now=NOW)

        assert result.error.kind == ErrorKind.UPSTREAM

    @pytest.mark.asyncio
    async def test_missing_client_secret(self, service, gateway) -> None:
        gateway.create_intent.return_value = IntentInfo(
            id="pi_jit",
            status="requires_payment_method",
            amount=600,
            currency="cad",
        )

        result = await service.create_intent("passenger-1", _dto(), now=NOW)

        assert result.error.kind == ErrorKind.INTERNAL
