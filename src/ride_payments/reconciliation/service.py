"""Service layer applying gateway callbacks to the booking store."""

import logging
from typing import Any, List, Optional, Tuple

from ..bookings.models import Booking
from ..bookings.store import BookingStore
from ..errors import NoMatch
from .callback import parse_stk_callback
from .matcher import BookingMatcher
from .models import (
    CallbackOutcome,
    CallbackOutcomeStatus,
    PaymentConfirmation,
    StkCallback,
)

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Handles callback deliveries and status queries against a booking store."""

    def __init__(self, store: BookingStore, matcher: Optional[BookingMatcher] = None):
        """Initialize the reconciliation service.

        Args:
            store: Booking store holding the bookings to reconcile.
            matcher: Optional matcher. A default BookingMatcher is used if not provided.
        """
        self.store = store
        self.matcher = matcher or BookingMatcher()

    def _find_target(
        self,
        bookings: List[Booking],
        callback: StkCallback,
        confirmation: PaymentConfirmation,
    ) -> Tuple[Booking, str]:
        booking, matched_by = self.matcher.match(
            bookings,
            phone=confirmation.phone,
            checkout_request_id=callback.checkout_request_id,
        )
        if booking is None:
            raise NoMatch(
                f"No booking found for phone {confirmation.phone} "
                f"(checkout {callback.checkout_request_id}, receipt {confirmation.receipt})"
            )
        return booking, matched_by

    async def handle_callback(self, payload: Any) -> CallbackOutcome:
        """Validate a callback and complete the booking it pays for.

        Safe to call again with the same payload: a receipt that is already
        recorded, or a booking that is already Completed, leaves the store
        untouched.

        Args:
            payload: Decoded JSON body of the callback request.

        Returns:
            CallbackOutcome describing what happened.

        Raises:
            InvalidCallback: If the payload has no ``Body.stkCallback``.
            IncompleteCallback: If a successful callback lacks receipt or phone.
            StoreUnavailable: If the store cannot be read or written.
        """
        callback = parse_stk_callback(payload)
        outcome = CallbackOutcome(
            status=CallbackOutcomeStatus.PAYMENT_FAILED,
            result_code=callback.result_code,
            result_desc=callback.result_desc,
            checkout_request_id=callback.checkout_request_id,
        )

        if not callback.succeeded:
            logger.warning(
                f"Payment failed for checkout {callback.checkout_request_id}: "
                f"[{callback.result_code}] {callback.result_desc}"
            )
            return outcome

        confirmation = callback.confirmation()
        outcome.receipt = confirmation.receipt
        outcome.phone = confirmation.phone
        outcome.amount = confirmation.amount

        async with self.store.transaction() as txn:
            duplicate = self.matcher.find_by_receipt(txn.bookings, confirmation.receipt)
            if duplicate is not None:
                logger.info(
                    f"Receipt {confirmation.receipt} already recorded on booking {duplicate.id}; "
                    "ignoring repeated callback"
                )
                outcome.status = CallbackOutcomeStatus.DUPLICATE
                outcome.booking_id = duplicate.id
                return outcome

            try:
                booking, matched_by = self._find_target(txn.bookings, callback, confirmation)
            except NoMatch as e:
                logger.warning(f"Unreconciled payment: {e}")
                outcome.status = CallbackOutcomeStatus.NO_MATCH
                return outcome

            outcome.booking_id = booking.id
            outcome.matched_by = matched_by

            if confirmation.amount is not None and booking.amount_due and confirmation.amount != booking.amount_due:
                logger.warning(
                    f"Amount paid for booking {booking.id} (KES {confirmation.amount}) "
                    f"differs from amount due (KES {booking.amount_due})"
                )

            if not booking.mark_completed(confirmation.receipt):
                logger.warning(
                    f"Booking {booking.id} is already Completed with {booking.mpesa_code}; "
                    f"receipt {confirmation.receipt} not applied"
                )
                outcome.status = CallbackOutcomeStatus.ALREADY_COMPLETED
                return outcome

            txn.mark_dirty()

        logger.info(
            f"Updated booking {booking.id} for {confirmation.phone} with receipt "
            f"{confirmation.receipt} (matched by {matched_by})"
        )
        outcome.status = CallbackOutcomeStatus.COMPLETED
        return outcome

    async def bookings_for_phone(self, phone: str) -> List[Booking]:
        """Bookings for ``phone`` (exact match), latest departure first."""
        bookings = await self.store.load_all()
        return self.matcher.for_phone(bookings, phone)
