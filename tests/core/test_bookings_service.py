# tests/core/test_bookings_service.py
"""
Тесты для сервиса бронирований.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.common.constants import BookingPaymentStatus, BookingStatus, RefundSource, RideStatus
from src.common.errors import ErrorKind, PaymentProviderError
from src.core.bookings.models import BookingCreateDTO
from src.core.bookings.service import BookingService
from src.core.bookings.state_machine import BookingStateMachine


@pytest.fixture
def service(mock_db, mock_refunds, mock_notifications) -> BookingService:
    """Сервис с замоканными репозиториями."""
    svc = BookingService(mock_db, mock_refunds, mock_notifications)
    svc._bookings = AsyncMock()
    svc._rides = AsyncMock()
    return svc


class TestBookingStateMachine:
    """Тесты переходов статусов."""

    def test_pending_can_be_accepted(self) -> None:
        assert BookingStateMachine.can_transition(BookingStatus.PENDING, BookingStatus.ACCEPTED)

    def test_pending_cannot_be_confirmed_directly(self) -> None:
        assert not BookingStateMachine.can_transition(BookingStatus.PENDING, BookingStatus.CONFIRMED)

    def test_terminal_statuses_have_no_exits(self) -> None:
        for status in (
            BookingStatus.COMPLETED,
            BookingStatus.CANCELLED_BY_DRIVER,
            BookingStatus.CANCELLED_BY_PASSENGER,
        ):
            assert BookingStateMachine.ALLOWED_TRANSITIONS[status] == []

    def test_unknown_status(self) -> None:
        assert not BookingStateMachine.can_transition("unknown", BookingStatus.ACCEPTED)

    def test_sources_for_confirmed(self) -> None:
        assert set(BookingStateMachine.sources_for(BookingStatus.CONFIRMED)) == {
            BookingStatus.ACCEPTED,
            BookingStatus.PAYMENT_PENDING,
        }


class TestCreateBooking:
    """Тесты создания бронирования."""

    @pytest.mark.asyncio
    async def test_create_keeps_seats(self, service, make_ride, make_booking, mock_notifications) -> None:
        """Ожидающее бронирование не списывает места."""
        service._rides.get_by_id.return_value = make_ride()
        service._bookings.create.return_value = make_booking()

        result = await service.create("passenger-1", "ride-1", BookingCreateDTO(seats=2))

        assert result.ok
        assert result.value.status == BookingStatus.PENDING
        service._rides.reserve_seats.assert_not_awaited()
        mock_notifications.notify.assert_awaited_once()
        assert mock_notifications.notify.call_args.args[0].user_id == "driver-1"

    @pytest.mark.asyncio
    async def test_seats_default_to_one(self, service, make_ride, make_booking) -> None:
        service._rides.get_by_id.return_value = make_ride()
        service._bookings.create.return_value = make_booking(seats_booked=1)

        await service.create("passenger-1", "ride-1", BookingCreateDTO())

        assert service._bookings.create.call_args.kwargs["seats_booked"] == 1

    @pytest.mark.asyncio
    async def test_ride_not_found(self, service) -> None:
        service._rides.get_by_id.return_value = None

        result = await service.create("passenger-1", "ride-x", BookingCreateDTO())

        assert result.error.kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_cannot_book_own_ride(self, service, make_ride) -> None:
        service._rides.get_by_id.return_value = make_ride()

        result = await service.create("driver-1", "ride-1", BookingCreateDTO())

        assert result.error.kind == ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_ride_not_open(self, service, make_ride) -> None:
        service._rides.get_by_id.return_value = make_ride(status=RideStatus.ONGOING)

        result = await service.create("passenger-1", "ride-1", BookingCreateDTO())

        assert result.error.kind == ErrorKind.INVALID_STATE

    @pytest.mark.asyncio
    async def test_more_than_capacity(self, service, make_ride) -> None:
        service._rides.get_by_id.return_value = make_ride()

        result = await service.create("passenger-1", "ride-1", BookingCreateDTO(seats=5))

        assert result.error.kind == ErrorKind.VALIDATION
        assert result.error.details == {"seats_total": 4}

    @pytest.mark.asyncio
    async def test_more_than_available(self, service, make_ride) -> None:
        service._rides.get_by_id.return_value = make_ride(seats_available=1)

        result = await service.create("passenger-1", "ride-1", BookingCreateDTO(seats=2))

        assert result.error.kind == ErrorKind.INVALID_STATE
        service._bookings.create.assert_not_awaited()


class TestConfirmBooking:
    """Тесты подтверждения водителем."""

    @pytest.mark.asyncio
    async def test_confirm_reserves_seats(self, service, make_ride, make_booking, mock_conn) -> None:
        """Поездка 4/4, бронирование на 2: после подтверждения свободно 2."""
        booking = make_booking()
        service._bookings.get_by_id.return_value = booking
        service._rides.get_by_id.return_value = make_ride()
        service._bookings.transition.return_value = booking.model_copy(update={"status": BookingStatus.ACCEPTED})
        service._rides.reserve_seats.return_value = make_ride(seats_available=2)

        result = await service.confirm("driver-1", "booking-1")

        assert result.ok
        assert result.value.booking.status == BookingStatus.ACCEPTED
        assert result.value.ride.seats_available == 2
        service._bookings.transition.assert_awaited_once_with(
            "booking-1",
            (BookingStatus.PENDING,),
            BookingStatus.ACCEPTED,
            conn=mock_conn,
        )
        service._rides.reserve_seats.assert_awaited_once_with("ride-1", 2, conn=mock_conn)

    @pytest.mark.asyncio
    async def test_confirm_not_enough_seats(self, service, make_ride, make_booking) -> None:
        booking = make_booking()
        service._bookings.get_by_id.return_value = booking
        service._rides.get_by_id.side_effect = [make_ride(), make_ride(seats_available=1)]
        service._bookings.transition.return_value = booking
        service._rides.reserve_seats.return_value = None

        result = await service.confirm("driver-1", "booking-1")

        assert result.error.kind == ErrorKind.INVALID_STATE
        assert result.error.details == {"seats_available": 1}

    @pytest.mark.asyncio
    async def test_confirm_ride_closed_meanwhile(self, service, make_ride, make_booking) -> None:
        booking = make_booking()
        service._bookings.get_by_id.return_value = booking
        service._rides.get_by_id.side_effect = [make_ride(), make_ride(status=RideStatus.CANCELLED)]
        service._bookings.transition.return_value = booking
        service._rides.reserve_seats.return_value = None

        result = await service.confirm("driver-1", "booking-1")

        assert result.error.kind == ErrorKind.INVALID_STATE
        assert result.error.details == {"status": "cancelled"}

    @pytest.mark.asyncio
    async def test_confirm_already_accepted_is_idempotent(self, service, make_ride, make_booking) -> None:
        service._bookings.get_by_id.return_value = make_booking(status=BookingStatus.ACCEPTED)
        service._rides.get_by_id.return_value = make_ride(seats_available=2)

        result = await service.confirm("driver-1", "booking-1")

        assert result.ok
        assert result.idempotent
        service._rides.reserve_seats.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_confirm_by_other_driver(self, service, make_ride, make_booking) -> None:
        service._bookings.get_by_id.return_value = make_booking()
        service._rides.get_by_id.return_value = make_ride()

        result = await service.confirm("driver-2", "booking-1")

        assert result.error.kind == ErrorKind.FORBIDDEN

    @pytest.mark.asyncio
    async def test_confirm_cancelled_booking(self, service, make_ride, make_booking) -> None:
        service._bookings.get_by_id.return_value = make_booking(status=BookingStatus.CANCELLED_BY_PASSENGER)
        service._rides.get_by_id.return_value = make_ride()

        result = await service.confirm("driver-1", "booking-1")

        assert result.error.kind == ErrorKind.INVALID_STATE


class TestRejectBooking:
    @pytest.mark.asyncio
    async def test_reject_keeps_seats(self, service, make_ride, make_booking) -> None:
        """Отклонение ожидающего бронирования на 3 места не меняет свободные места."""
        booking = make_booking(seats_booked=3)
        service._bookings.get_by_id.return_value = booking
        service._rides.get_by_id.return_value = make_ride()
        service._bookings.transition.return_value = booking.model_copy(
            update={"status": BookingStatus.CANCELLED_BY_DRIVER}
        )

        result = await service.reject("driver-1", "booking-1")

        assert result.ok
        assert result.value.ride.seats_available == 4
        service._rides.release_seats.assert_not_awaited()
        service._rides.reserve_seats.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reject_accepted_booking(self, service, make_ride, make_booking) -> None:
        service._bookings.get_by_id.return_value = make_booking(status=BookingStatus.ACCEPTED)
        service._rides.get_by_id.return_value = make_ride()

        result = await service.reject("driver-1", "booking-1")

        assert result.error.kind == ErrorKind.INVALID_STATE


class TestCancelBooking:
    """Тесты отмены с возвратом."""

    @pytest.mark.asyncio
    async def test_cancel_accepted_releases_seats(
        self, service, make_ride, make_booking, mock_refunds, mock_conn
    ) -> None:
        booking = make_booking(status=BookingStatus.ACCEPTED)
        service._bookings.get_by_id.return_value = booking
        service._rides.get_by_id.return_value = make_ride(seats_available=2)
        service._bookings.transition.return_value = booking.model_copy(
            update={"status": BookingStatus.CANCELLED_BY_PASSENGER}
        )
        service._rides.release_seats.return_value = make_ride(seats_available=4)

        result = await service.cancel_by_passenger("passenger-1", "booking-1")

        assert result.ok
        assert result.value.ride.seats_available == 4
        mock_refunds.refund_booking_if_paid.assert_awaited_once_with(
            booking,
            RefundSource.PASSENGER_CANCEL_BOOKING,
        )
        service._rides.release_seats.assert_awaited_once_with("ride-1", 2, conn=mock_conn)

    @pytest.mark.asyncio
    async def test_cancel_pending_does_not_release(self, service, make_ride, make_booking) -> None:
        booking = make_booking()
        service._bookings.get_by_id.return_value = booking
        service._rides.get_by_id.return_value = make_ride()
        service._bookings.transition.return_value = booking.model_copy(
            update={"status": BookingStatus.CANCELLED_BY_PASSENGER}
        )

        result = await service.cancel_by_passenger("passenger-1", "booking-1")

        assert result.ok
        service._rides.release_seats.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refund_failure_aborts_cancel(
        self, service, make_ride, make_booking, mock_refunds, mock_notifications
    ) -> None:
        """Ошибка возврата: статус и места не меняются, ответ UPSTREAM."""
        booking = make_booking(
            status=BookingStatus.CONFIRMED,
            payment_status=BookingPaymentStatus.PAID,
            payment_intent_id="pi_1",
        )
        service._bookings.get_by_id.return_value = booking
        service._rides.get_by_id.return_value = make_ride(seats_available=2)
        mock_refunds.refund_booking_if_paid.side_effect = PaymentProviderError("network")

        result = await service.cancel_by_driver("driver-1", "booking-1")

        assert result.error.kind == ErrorKind.UPSTREAM
        service._bookings.transition.assert_not_awaited()
        service._rides.release_seats.assert_not_awaited()
        mock_notifications.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_paid_during_cancel_conflict(self, service, make_ride, make_booking, mock_refunds) -> None:
        """Оплата между чтением и транзакцией: отмена откатывается без потери возврата."""
        before = make_booking(
            status=BookingStatus.PAYMENT_PENDING,
            payment_status=BookingPaymentStatus.PENDING,
            payment_intent_id="pi_1",
        )
        paid = before.model_copy(update={
            "status": BookingStatus.CONFIRMED,
            "payment_status": BookingPaymentStatus.PAID,
        })
        service._bookings.get_by_id.side_effect = [before, paid]
        service._rides.get_by_id.return_value = make_ride(seats_available=2)

        result = await service.cancel_by_passenger("passenger-1", "booking-1")

        assert result.error.kind == ErrorKind.CONFLICT
        assert result.error.details == {"booking_id": "booking-1"}
        mock_refunds.refund_booking_if_paid.assert_awaited_once_with(
            before,
            RefundSource.PASSENGER_CANCEL_BOOKING,
        )
        service._bookings.transition.assert_not_awaited()
        service._rides.release_seats.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_repeat_cancel_is_idempotent(self, service, make_ride, make_booking, mock_refunds) -> None:
        service._bookings.get_by_id.return_value = make_booking(status=BookingStatus.CANCELLED_BY_PASSENGER)
        service._rides.get_by_id.return_value = make_ride()

        result = await service.cancel_by_passenger("passenger-1", "booking-1")

        assert result.ok
        assert result.idempotent
        mock_refunds.refund_booking_if_paid.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cannot_cancel_completed(self, service, make_ride, make_booking) -> None:
        service._bookings.get_by_id.return_value = make_booking(status=BookingStatus.COMPLETED)
        service._rides.get_by_id.return_value = make_ride()

        result = await service.cancel_by_driver("driver-1", "booking-1")

        assert result.error.kind == ErrorKind.INVALID_STATE

    @pytest.mark.asyncio
    async def test_cancel_foreign_booking(self, service, make_ride, make_booking) -> None:
        service._bookings.get_by_id.return_value = make_booking()
        service._rides.get_by_id.return_value = make_ride()

        result = await service.cancel_by_passenger("passenger-2", "booking-1")

        assert result.error.kind == ErrorKind.FORBIDDEN


class TestListBookings:
    @pytest.mark.asyncio
    async def test_list_for_ride_only_driver(self, service, make_ride) -> None:
        service._rides.get_by_id.return_value = make_ride()

        result = await service.list_for_ride("passenger-1", "ride-1")

        assert result.error.kind == ErrorKind.FORBIDDEN
        service._bookings.list_by_ride.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_list_for_ride(self, service, make_ride, make_booking) -> None:
        service._rides.get_by_id.return_value = make_ride()
        service._bookings.list_by_ride.return_value = [make_booking()]

        result = await service.list_for_ride("driver-1", "ride-1")

        assert [b.id for b in result.value] == ["booking-1"]
