# tests/core/test_offers.py
"""
Тесты для предложений водителей.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from asyncpg import UniqueViolationError

from src.common.constants import BookingStatus, OfferStatus, RideRequestMode, RideRequestStatus, RideStatus
from src.common.errors import ErrorKind
from src.core.notifications.service import NotificationKind
from src.core.ride_requests.models import OfferCreateDTO
from src.core.ride_requests.offers import OfferService


@pytest.fixture
def service(mock_db, mock_notifications) -> OfferService:
    svc = OfferService(mock_db, mock_notifications)
    svc._requests = AsyncMock()
    svc._offers = AsyncMock()
    svc._rides = AsyncMock()
    svc._bookings = AsyncMock()
    return svc


class TestCreateOffer:
    """Водитель предлагает место в своей поездке."""

    @pytest.mark.asyncio
    async def test_create_uses_ride_price(self, service, make_request, make_ride, make_offer, mock_notifications) -> None:
        service._requests.get_by_id.return_value = make_request()
        service._rides.get_by_id.return_value = make_ride(price_per_seat=17.5)
        service._offers.find.return_value = None
        service._offers.create.return_value = make_offer(price_per_seat=17.5)

        result = await service.create("driver-1", "request-1", OfferCreateDTO(ride_id="ride-1"))

        assert result.ok
        kwargs = service._offers.create.call_args.kwargs
        assert kwargs["price_per_seat"] == 17.5
        assert kwargs["seats_offered"] == 2
        notification = mock_notifications.notify.call_args.args[0]
        assert notification.user_id == "passenger-1"
        assert notification.kind == NotificationKind.OFFER_CREATED

    @pytest.mark.asyncio
    async def test_rejected_offer_is_revived(self, service, make_request, make_ride, make_offer) -> None:
        service._requests.get_by_id.return_value = make_request()
        service._rides.get_by_id.return_value = make_ride()
        service._offers.find.return_value = make_offer(status=OfferStatus.REJECTED)
        service._offers.update.return_value = make_offer()

        result = await service.create("driver-1", "request-1", OfferCreateDTO(ride_id="ride-1"))

        assert result.ok
        assert service._offers.update.call_args.kwargs["status"] == OfferStatus.PENDING
        service._offers.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_pending_offer(self, service, make_request, make_ride, make_offer) -> None:
        service._requests.get_by_id.return_value = make_request()
        service._rides.get_by_id.return_value = make_ride()
        service._offers.find.return_value = make_offer()

        result = await service.create("driver-1", "request-1", OfferCreateDTO(ride_id="ride-1"))

        assert result.error.kind == ErrorKind.CONFLICT

    @pytest.mark.asyncio
    async def test_unique_violation_is_conflict(self, service, make_request, make_ride) -> None:
        service._requests.get_by_id.return_value = make_request()
        service._rides.get_by_id.return_value = make_ride()
        service._offers.find.return_value = None
        service._offers.create.side_effect = UniqueViolationError("duplicate key")

        result = await service.create("driver-1", "request-1", OfferCreateDTO(ride_id="ride-1"))

        assert result.error.kind == ErrorKind.CONFLICT

    @pytest.mark.asyncio
    async def test_jit_request_takes_no_offers(self, service, make_request) -> None:
        service._requests.get_by_id.return_value = make_request(mode=RideRequestMode.JIT)

        result = await service.create("driver-1", "request-1", OfferCreateDTO(ride_id="ride-1"))

        assert result.error.kind == ErrorKind.INVALID_STATE

    @pytest.mark.asyncio
    async def test_not_own_ride(self, service, make_request, make_ride) -> None:
        service._requests.get_by_id.return_value = make_request()
        service._rides.get_by_id.return_value = make_ride(driver_id="driver-2")

        result = await service.create("driver-1", "request-1", OfferCreateDTO(ride_id="ride-1"))

        assert result.error.kind == ErrorKind.FORBIDDEN

    @pytest.mark.asyncio
    async def test_too_few_seats_offered(self, service, make_request, make_ride) -> None:
        service._requests.get_by_id.return_value = make_request(seats_needed=3)
        service._rides.get_by_id.return_value = make_ride()

        result = await service.create(
            "driver-1",
            "request-1",
            OfferCreateDTO(ride_id="ride-1", seats_offered=2),
        )

        assert result.error.kind == ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_ride_lacks_seats(self, service, make_request, make_ride) -> None:
        service._requests.get_by_id.return_value = make_request()
        service._rides.get_by_id.return_value = make_ride(seats_available=1)

        result = await service.create("driver-1", "request-1", OfferCreateDTO(ride_id="ride-1"))

        assert result.error.kind == ErrorKind.INVALID_STATE

    @pytest.mark.asyncio
    async def test_passenger_cannot_offer_to_self(self, service, make_request) -> None:
        service._requests.get_by_id.return_value = make_request(passenger_id="driver-1")

        result = await service.create("driver-1", "request-1", OfferCreateDTO(ride_id="ride-1"))

        assert result.error.kind == ErrorKind.VALIDATION


class TestAcceptOffer:
    """Пассажир принимает предложение."""

    @pytest.mark.asyncio
    async def test_accept_books_and_reserves(
        self, service, make_request, make_ride, make_offer, make_booking, mock_conn, mock_notifications
    ) -> None:
        offer = make_offer()
        request = make_request()
        service._offers.get_by_id.return_value = offer
        service._requests.get_by_id.return_value = request
        service._rides.get_by_id.return_value = make_ride()
        service._offers.transition.return_value = make_offer(status=OfferStatus.ACCEPTED)
        service._requests.mark_accepted.return_value = request.model_copy(
            update={"status": RideRequestStatus.ACCEPTED, "driver_id": "driver-1"}
        )
        service._bookings.create.return_value = make_booking(status=BookingStatus.ACCEPTED)
        service._rides.reserve_seats.return_value = make_ride(seats_available=2)
        service._offers.update.return_value = make_offer(status=OfferStatus.ACCEPTED, booking_id="booking-1")
        service._offers.reject_other_pending.return_value = 2

        result = await service.accept("passenger-1", "request-1", "offer-1")

        assert result.ok
        assert result.value.booking.status == BookingStatus.ACCEPTED
        assert result.value.ride.seats_available == 2
        assert result.value.offer.booking_id == "booking-1"
        assert service._bookings.create.call_args.kwargs["seats_booked"] == 2
        service._rides.reserve_seats.assert_awaited_once_with("ride-1", 2, conn=mock_conn)
        service._offers.reject_other_pending.assert_awaited_once_with(
            "request-1",
            keep_offer_id="offer-1",
            conn=mock_conn,
        )
        assert mock_notifications.notify.call_args.args[0].user_id == "driver-1"

    @pytest.mark.asyncio
    async def test_accept_when_seats_gone(self, service, make_request, make_ride, make_offer, make_booking) -> None:
        request = make_request()
        service._offers.get_by_id.return_value = make_offer()
        service._requests.get_by_id.return_value = request
        service._rides.get_by_id.return_value = make_ride()
        service._offers.transition.return_value = make_offer(status=OfferStatus.ACCEPTED)
        service._requests.mark_accepted.return_value = request
        service._bookings.create.return_value = make_booking()
        service._rides.reserve_seats.return_value = None

        result = await service.accept("passenger-1", "request-1", "offer-1")

        assert result.error.kind == ErrorKind.INVALID_STATE
        service._offers.reject_other_pending.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_accept_closed_ride(self, service, make_request, make_ride, make_offer) -> None:
        service._offers.get_by_id.return_value = make_offer()
        service._requests.get_by_id.return_value = make_request()
        service._rides.get_by_id.return_value = make_ride(status=RideStatus.CANCELLED)

        result = await service.accept("passenger-1", "request-1", "offer-1")

        assert result.error.kind == ErrorKind.INVALID_STATE
        service._offers.transition.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_accept_again_is_idempotent(self, service, make_request, make_ride, make_offer, make_booking) -> None:
        service._offers.get_by_id.return_value = make_offer(status=OfferStatus.ACCEPTED, booking_id="booking-1")
        service._requests.get_by_id.return_value = make_request(
            status=RideRequestStatus.ACCEPTED,
            driver_id="driver-1",
        )
        service._bookings.get_by_id.return_value = make_booking(status=BookingStatus.ACCEPTED)
        service._rides.get_by_id.return_value = make_ride(seats_available=2)

        result = await service.accept("passenger-1", "request-1", "offer-1")

        assert result.ok
        assert result.idempotent
        service._bookings.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_offer_from_other_request(self, service, make_offer) -> None:
        service._offers.get_by_id.return_value = make_offer(ride_request_id="request-2")

        result = await service.accept("passenger-1", "request-1", "offer-1")

        assert result.error.kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_not_owner(self, service, make_request, make_offer) -> None:
        service._offers.get_by_id.return_value = make_offer()
        service._requests.get_by_id.return_value = make_request()

        result = await service.accept("passenger-2", "request-1", "offer-1")

        assert result.error.kind == ErrorKind.FORBIDDEN


class TestRejectAndCancelOffer:
    @pytest.mark.asyncio
    async def test_reject(self, service, make_request, make_offer, mock_notifications) -> None:
        service._offers.get_by_id.return_value = make_offer()
        service._requests.get_by_id.return_value = make_request()
        service._offers.transition.return_value = make_offer(status=OfferStatus.REJECTED)

        result = await service.reject("passenger-1", "request-1", "offer-1")

        assert result.value.status == OfferStatus.REJECTED
        assert mock_notifications.notify.call_args.args[0].kind == NotificationKind.OFFER_REJECTED

    @pytest.mark.asyncio
    async def test_reject_accepted_offer(self, service, make_request, make_offer) -> None:
        service._offers.get_by_id.return_value = make_offer(status=OfferStatus.ACCEPTED)
        service._requests.get_by_id.return_value = make_request()
        service._offers.transition.return_value = None

        result = await service.reject("passenger-1", "request-1", "offer-1")

        assert result.error.kind == ErrorKind.INVALID_STATE

    @pytest.mark.asyncio
    async def test_driver_cancels(self, service, make_request, make_offer) -> None:
        service._offers.get_by_id.return_value = make_offer()
        service._requests.get_by_id.return_value = make_request()
        service._offers.transition.return_value = make_offer(status=OfferStatus.CANCELLED)

        result = await service.cancel("driver-1", "request-1", "offer-1")

        assert result.value.status == OfferStatus.CANCELLED
        service._offers.transition.assert_awaited_once_with("offer-1", OfferStatus.PENDING, OfferStatus.CANCELLED)

    @pytest.mark.asyncio
    async def test_other_driver_cannot_cancel(self, service, make_request, make_offer) -> None:
        service._offers.get_by_id.return_value = make_offer()
        service._requests.get_by_id.return_value = make_request()

        result = await service.cancel("driver-2", "request-1", "offer-1")

        assert result.error.kind == ErrorKind.FORBIDDEN


class TestListOffers:
    @pytest.mark.asyncio
    async def test_passenger_sees_all(self, service, make_request) -> None:
        service._requests.get_by_id.return_value = make_request()

        await service.list_for_request("passenger-1", "request-1")

        service._offers.list_by_request.assert_awaited_once_with("request-1", None)

    @pytest.mark.asyncio
    async def test_driver_sees_own(self, service, make_request) -> None:
        service._requests.get_by_id.return_value = make_request()

        await service.list_for_request("driver-3", "request-1")

        service._offers.list_by_request.assert_awaited_once_with("request-1", "driver-3")
