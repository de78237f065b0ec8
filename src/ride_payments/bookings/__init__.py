"""Booking model and store implementations."""

from .models import (
    Booking,
    BookingCreate,
    PaymentStatus,
    SEAT_PRICE_KES,
    MANUAL_PAYMENT_CODE,
)
from .store import (
    BookingStore,
    StoreTransaction,
    InMemoryBookingStore,
    JsonFileBookingStore,
)

__all__ = [
    "Booking",
    "BookingCreate",
    "PaymentStatus",
    "SEAT_PRICE_KES",
    "MANUAL_PAYMENT_CODE",
    "BookingStore",
    "StoreTransaction",
    "InMemoryBookingStore",
    "JsonFileBookingStore",
]
