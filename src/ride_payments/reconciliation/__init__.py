"""Reconciliation of asynchronous gateway callbacks with bookings.

The gateway reports the final result of an STK push by POSTing to the
callback URL some time after the push was accepted. This package:

- validates the callback envelope and extracts the payment confirmation
- selects the booking the payment belongs to
- completes that booking exactly once, tolerating repeated deliveries
"""

from .models import (
    CALLBACK_ACKNOWLEDGEMENT,
    CallbackItem,
    CallbackOutcome,
    CallbackOutcomeStatus,
    PaymentConfirmation,
    StkCallback,
)
from .callback import parse_stk_callback
from .matcher import BookingMatcher
from .service import ReconciliationService

__all__ = [
    # Models
    "CALLBACK_ACKNOWLEDGEMENT",
    "CallbackItem",
    "CallbackOutcome",
    "CallbackOutcomeStatus",
    "PaymentConfirmation",
    "StkCallback",
    # Core Components
    "parse_stk_callback",
    "BookingMatcher",
    "ReconciliationService",
]
