"""Selection of the booking a callback or status query refers to."""

import logging
from typing import List, Optional, Tuple

from ..bookings.models import Booking

logger = logging.getLogger(__name__)


class BookingMatcher:
    """Matches gateway results to bookings.

    A booking whose STK push was tied to it carries the push's
    CheckoutRequestID and is matched by that key alone. Untagged bookings
    fall back to phone number plus recency: among untagged bookings whose
    ``phone_number`` equals the payer's exactly, the one with the latest
    departure date wins. Ties go to the most recently created booking, then
    to the one stored last.
    """

    def for_phone(self, bookings: List[Booking], phone: str) -> List[Booking]:
        """All bookings for ``phone``, best match first.

        Args:
            bookings: Complete booking collection in store order.
            phone: Phone number, compared by exact string equality.

        Returns:
            Matching bookings ordered by departure date descending.
        """
        indexed = [
            (position, booking)
            for position, booking in enumerate(bookings)
            if booking.phone_number == phone
        ]
        indexed.sort(
            key=lambda pair: (pair[1].departure_date, pair[1].created_at, pair[0]),
            reverse=True,
        )
        return [booking for _, booking in indexed]

    def find_by_checkout_request_id(
        self,
        bookings: List[Booking],
        checkout_request_id: Optional[str],
    ) -> Optional[Booking]:
        if not checkout_request_id:
            return None
        for booking in bookings:
            if booking.checkout_request_id == checkout_request_id:
                return booking
        return None

    def find_by_receipt(self, bookings: List[Booking], receipt: str) -> Optional[Booking]:
        for booking in bookings:
            if booking.mpesa_code and booking.mpesa_code == receipt:
                return booking
        return None

    def match(
        self,
        bookings: List[Booking],
        phone: str,
        checkout_request_id: Optional[str] = None,
    ) -> Tuple[Optional[Booking], Optional[str]]:
        """Pick the booking a payment belongs to.

        Returns:
            Tuple of (booking or None, how it was matched: 'checkout_request_id',
            'phone' or None).
        """
        booking = self.find_by_checkout_request_id(bookings, checkout_request_id)
        if booking is not None:
            return booking, "checkout_request_id"

        # A booking tied to another checkout belongs to that push
        candidates = [b for b in self.for_phone(bookings, phone) if not b.checkout_request_id]
        if not candidates:
            return None, None
        if len(candidates) > 1:
            logger.info(
                f"{len(candidates)} bookings share phone {phone}; "
                f"choosing {candidates[0].id} (departure {candidates[0].departure_date})"
            )
        return candidates[0], "phone"
