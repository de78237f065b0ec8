"""Payment service layer tying the gateway connector to the booking store."""

import logging
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel

from .bookings import (
    Booking,
    BookingCreate,
    BookingStore,
    MANUAL_PAYMENT_CODE,
)
from .connectors.base import ConnectorBase, StkPushResponse
from .errors import BookingNotFound, InvalidRequest, RidePaymentsError
from .phone import normalize_phone
from .reconciliation import ReconciliationService

logger = logging.getLogger(__name__)


class PaymentAttempt(BaseModel):
    """Outcome of the STK push made while submitting a booking."""
    initiated: bool
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    error: Optional[str] = None
    details: Optional[Any] = None


class PaymentService:
    """Service class for payment operations on bookings."""

    def __init__(self, store: BookingStore, connector: ConnectorBase):
        """Initialize the service.

        Args:
            store: Booking store used for lookups and payment state changes.
            connector: Gateway connector used to start payments.
        """
        self.store = store
        self.connector = connector
        self.reconciliation = ReconciliationService(store)

    async def get_access_token(self) -> str:
        return await self.connector.get_access_token()

    async def _get_booking(self, booking_id: str) -> Booking:
        for booking in await self.store.load_all():
            if booking.id == booking_id:
                return booking
        raise BookingNotFound(f"Booking {booking_id} not found")

    async def initiate_payment(
        self,
        phone: str,
        amount: int,
        booking_id: Optional[str] = None,
    ) -> StkPushResponse:
        """Send an STK push and, when ``booking_id`` is given, record its identifiers.

        The gateway's CheckoutRequestID is stored on the booking so the later
        callback can be matched to it directly instead of by phone number.

        Raises:
            InvalidRequest: Missing or malformed phone/amount, or the booking is already paid.
            BookingNotFound: ``booking_id`` does not exist.
            GatewayError: The credential or push request failed.
            StoreUnavailable: The store could not be read or written.
        """
        if booking_id is not None:
            booking = await self._get_booking(booking_id)
            if booking.is_completed:
                raise InvalidRequest(f"Booking {booking_id} is already paid")

        response = await self.connector.stk_push(phone=phone, amount=amount)

        if booking_id is not None:
            async with self.store.transaction() as txn:
                booking = txn.get(booking_id)
                if booking is None:
                    # Deleted while the push was in flight
                    logger.warning(
                        f"Booking {booking_id} disappeared before checkout "
                        f"{response.checkout_request_id} could be recorded"
                    )
                else:
                    booking.checkout_request_id = response.checkout_request_id
                    booking.merchant_request_id = response.merchant_request_id
                    txn.mark_dirty()
        return response

    async def submit_booking(self, data: BookingCreate) -> Tuple[Booking, PaymentAttempt]:
        """Save a new Pending booking, then try to start its payment.

        The booking is persisted before any gateway call, and a failed
        payment attempt never undoes it; the payer can be reconciled later by
        re-initiating or by a manual override.
        """
        booking = Booking(
            name=data.name,
            phone_number=normalize_phone(data.phone_number),
            residence=data.residence,
            departure_date=data.departure_date,
            departure_time=data.departure_time,
            route=data.route,
            selected_seats=data.selected_seats,
            seats=len(data.selected_seats),
        )
        async with self.store.transaction() as txn:
            txn.add(booking)
        logger.info(f"Saved booking {booking.id} for {booking.phone_number} ({booking.seats} seats)")

        if not data.payer_phone:
            logger.info(f"Booking {booking.id} saved without payment initiation")
            return booking, PaymentAttempt(initiated=False)

        try:
            response = await self.initiate_payment(
                phone=data.payer_phone,
                amount=booking.amount_due,
                booking_id=booking.id,
            )
        except RidePaymentsError as e:
            logger.error(f"Payment initiation for booking {booking.id} failed: {e.message} {e.details}")
            return booking, PaymentAttempt(initiated=False, error=e.message, details=e.details)

        booking.checkout_request_id = response.checkout_request_id
        booking.merchant_request_id = response.merchant_request_id
        return booking, PaymentAttempt(
            initiated=True,
            checkout_request_id=response.checkout_request_id,
            merchant_request_id=response.merchant_request_id,
        )

    async def mark_paid(self, booking_id: str, mpesa_code: str = MANUAL_PAYMENT_CODE) -> Booking:
        """Manually complete a booking (e.g. cash or out-of-band M-Pesa payment).

        Completing an already Completed booking leaves its receipt unchanged.

        Raises:
            BookingNotFound: ``booking_id`` does not exist.
        """
        if not mpesa_code:
            raise InvalidRequest("mpesaCode must not be empty")
        async with self.store.transaction() as txn:
            booking = txn.get(booking_id)
            if booking is None:
                raise BookingNotFound(f"Booking {booking_id} not found")
            if booking.mark_completed(mpesa_code):
                txn.mark_dirty()
                logger.info(f"Booking {booking_id} manually marked as paid ({mpesa_code})")
            else:
                logger.info(f"Booking {booking_id} already Completed with {booking.mpesa_code}")
        return booking

    async def payment_status(self, phone: str) -> List[Booking]:
        return await self.reconciliation.bookings_for_phone(phone)
