"""Tests for the payment service layer."""

import pytest
from datetime import date
from unittest.mock import AsyncMock

from ride_payments.bookings import BookingCreate, InMemoryBookingStore, PaymentStatus
from ride_payments.connectors import SimulatorConfig, SimulatorConnector, SimulatorScenario
from ride_payments.errors import BookingNotFound, GatewayError, InvalidRequest
from ride_payments.reconciliation import CallbackOutcomeStatus
from ride_payments.services import PaymentService


@pytest.fixture
def booking_form():
    """Return booking submission data as entered on the form."""
    return BookingCreate.model_validate({
        "name": "Jane Wanjiru",
        "phoneNumber": "0712345678",
        "residence": "Westlands",
        "departureDate": "2024-05-10",
        "departureTime": "08:00",
        "route": "Nairobi - Mombasa",
        "selectedSeats": ["A1", "A2"],
        "payerPhone": "0712345678",
    })


class TestInitiatePayment:
    """Tests for PaymentService.initiate_payment."""

    async def test_without_booking(self, memory_store, simulator):
        """Test a bare STK push leaves the store untouched."""
        service = PaymentService(memory_store, simulator)

        response = await service.initiate_payment("0712345678", 1000)

        assert response.checkout_request_id.startswith("ws_CO_")
        assert await memory_store.load_all() == []

    async def test_records_checkout_on_booking(self, make_booking, simulator):
        """Test that the checkout id is stored on the given booking."""
        booking = make_booking()
        store = InMemoryBookingStore([booking])
        service = PaymentService(store, simulator)

        response = await service.initiate_payment("0712345678", 2000, booking_id=booking.id)

        saved = (await store.load_all())[0]
        assert saved.checkout_request_id == response.checkout_request_id
        assert saved.merchant_request_id == response.merchant_request_id
        assert saved.payment_status == PaymentStatus.PENDING

    async def test_unknown_booking(self, memory_store, simulator):
        """Test that an unknown booking id is rejected before the push."""
        service = PaymentService(memory_store, simulator)

        with pytest.raises(BookingNotFound):
            await service.initiate_payment("0712345678", 1000, booking_id="missing")
        assert simulator.get_all_pushes() == []

    async def test_completed_booking(self, make_booking, simulator):
        """Test that a paid booking cannot be charged again."""
        booking = make_booking()
        booking.mark_completed("QGR7XYZ123")
        service = PaymentService(InMemoryBookingStore([booking]), simulator)

        with pytest.raises(InvalidRequest):
            await service.initiate_payment("0712345678", 2000, booking_id=booking.id)

    async def test_gateway_error_propagates(self, make_booking):
        """Test that gateway failures reach the caller and change nothing."""
        booking = make_booking()
        store = InMemoryBookingStore([booking])
        connector = SimulatorConnector(SimulatorConfig(scenario=SimulatorScenario.GATEWAY_ERROR))
        service = PaymentService(store, connector)

        with pytest.raises(GatewayError):
            await service.initiate_payment("0712345678", 2000, booking_id=booking.id)
        assert (await store.load_all())[0].checkout_request_id is None


class TestSubmitBooking:
    """Tests for PaymentService.submit_booking."""

    async def test_saves_then_initiates(self, memory_store, simulator, booking_form):
        """Test the booking is saved Pending and the push is tied to it."""
        service = PaymentService(memory_store, simulator)

        booking, attempt = await service.submit_booking(booking_form)

        assert attempt.initiated is True
        assert booking.phone_number == "254712345678"
        assert booking.departure_date == date(2024, 5, 10)
        assert booking.seats == 2

        saved = await memory_store.load_all()
        assert len(saved) == 1
        assert saved[0].payment_status == PaymentStatus.PENDING
        assert saved[0].checkout_request_id == attempt.checkout_request_id

        push = simulator.get_push(attempt.checkout_request_id)
        assert push.amount == 2000
        assert push.phone == "254712345678"

    async def test_without_payer_phone(self, memory_store, simulator, booking_form):
        """Test that no push is sent when no payer number is given."""
        booking_form.payer_phone = None
        service = PaymentService(memory_store, simulator)

        booking, attempt = await service.submit_booking(booking_form)

        assert attempt.initiated is False
        assert attempt.error is None
        assert len(await memory_store.load_all()) == 1
        assert simulator.get_all_pushes() == []

    async def test_initiation_failure_keeps_booking(self, memory_store, booking_form):
        """Test that a failed push never undoes the saved booking."""
        connector = SimulatorConnector(SimulatorConfig(scenario=SimulatorScenario.GATEWAY_ERROR))
        service = PaymentService(memory_store, connector)

        booking, attempt = await service.submit_booking(booking_form)

        assert attempt.initiated is False
        assert attempt.error == "Failed to generate token"
        saved = await memory_store.load_all()
        assert [b.id for b in saved] == [booking.id]
        assert saved[0].payment_status == PaymentStatus.PENDING

    async def test_invalid_payer_phone_keeps_booking(self, memory_store, simulator, booking_form):
        """Test that a malformed payer number is reported, not raised."""
        booking_form.payer_phone = "12345"
        service = PaymentService(memory_store, simulator)

        booking, attempt = await service.submit_booking(booking_form)

        assert attempt.initiated is False
        assert "Invalid phone number" in attempt.error
        assert len(await memory_store.load_all()) == 1

    async def test_invalid_booking_phone(self, memory_store, simulator, booking_form):
        """Test that a malformed booking phone is rejected before saving."""
        booking_form.phone_number = "abc"
        service = PaymentService(memory_store, simulator)

        with pytest.raises(InvalidRequest):
            await service.submit_booking(booking_form)
        assert await memory_store.load_all() == []


class TestMarkPaid:
    """Tests for the manual override."""

    async def test_mark_paid_default_code(self, make_booking, simulator):
        """Test marking a booking paid with the manual code."""
        booking = make_booking()
        store = InMemoryBookingStore([booking])

        result = await PaymentService(store, simulator).mark_paid(booking.id)

        assert result.payment_status == PaymentStatus.COMPLETED
        assert result.mpesa_code == "MANUAL_PAYMENT"
        assert (await store.load_all())[0].mpesa_code == "MANUAL_PAYMENT"

    async def test_mark_paid_is_idempotent(self, make_booking, simulator):
        """Test that an already completed booking keeps its receipt."""
        booking = make_booking()
        booking.mark_completed("QGR7XYZ123")
        store = InMemoryBookingStore([booking])

        result = await PaymentService(store, simulator).mark_paid(booking.id, "OTHER")

        assert result.mpesa_code == "QGR7XYZ123"

    async def test_mark_paid_unknown(self, memory_store, simulator):
        """Test marking a missing booking."""
        with pytest.raises(BookingNotFound):
            await PaymentService(memory_store, simulator).mark_paid("missing")

    async def test_mark_paid_empty_code(self, make_booking, simulator):
        """Test that an empty code is rejected."""
        booking = make_booking()
        with pytest.raises(InvalidRequest):
            await PaymentService(InMemoryBookingStore([booking]), simulator).mark_paid(booking.id, "")


class TestEndToEnd:
    """Booking submission through callback confirmation."""

    async def test_submit_push_callback_status(self, memory_store, simulator, booking_form):
        """Test the full flow with the simulator delivering the callback."""
        service = PaymentService(memory_store, simulator)
        booking, attempt = await service.submit_booking(booking_form)

        payload = simulator.build_callback(attempt.checkout_request_id)
        outcome = await service.reconciliation.handle_callback(payload)

        assert outcome.status == CallbackOutcomeStatus.COMPLETED
        assert outcome.matched_by == "checkout_request_id"

        status = await service.payment_status("254712345678")
        assert status[0].id == booking.id
        assert status[0].is_completed
        assert status[0].mpesa_code == simulator.get_push(attempt.checkout_request_id).receipt

    async def test_get_access_token_delegates(self, memory_store):
        """Test that token requests go to the connector."""
        connector = AsyncMock()
        connector.get_access_token.return_value = "tok"

        assert await PaymentService(memory_store, connector).get_access_token() == "tok"
