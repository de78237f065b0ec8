# ride_payments package
__version__ = "0.1.0"

from .bookings import (
    Booking,
    BookingCreate,
    PaymentStatus,
    BookingStore,
    InMemoryBookingStore,
    JsonFileBookingStore,
)
from .database import SqlBookingStore
from .config import MpesaConfig
from .services import PaymentService, PaymentAttempt

# Reconciliation exports
from .reconciliation import (
    ReconciliationService,
    BookingMatcher,
    CallbackOutcome,
    CallbackOutcomeStatus,
    parse_stk_callback,
)
from .poller import (
    PaymentStatusPoller,
    PollState,
    PollOutcome,
    HttpStatusFetcher,
)
