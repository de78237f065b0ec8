"""Booking model shared by the stores, the matcher and the HTTP layer."""

import enum
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Fare per seat in KES
SEAT_PRICE_KES = 1000

MANUAL_PAYMENT_CODE = "MANUAL_PAYMENT"


class PaymentStatus(str, enum.Enum):
    """Payment state of a booking. Pending -> Completed, never back."""
    PENDING = "Pending"
    COMPLETED = "Completed"


class Booking(BaseModel):
    """A seat reservation on a scheduled ride.

    Serialized with the camelCase field names used by the booking records
    (``phoneNumber``, ``paymentStatus``, ``mpesaCode`` ...).
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    phone_number: str = Field(..., alias="phoneNumber", min_length=1)
    departure_date: date = Field(..., alias="departureDate")
    departure_time: str = Field(default="", alias="departureTime")
    route: str = ""
    selected_seats: List[str] = Field(default_factory=list, alias="selectedSeats")
    seats: int = Field(default=0, ge=0)
    name: str = ""
    residence: str = ""
    payment_status: PaymentStatus = Field(default=PaymentStatus.PENDING, alias="paymentStatus")
    mpesa_code: str = Field(default="", alias="mpesaCode")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc).replace(tzinfo=None),
        alias="createdAt",
    )

    # Gateway identifiers recorded when an STK push is tied to this booking
    checkout_request_id: Optional[str] = Field(default=None, alias="checkoutRequestId")
    merchant_request_id: Optional[str] = Field(default=None, alias="merchantRequestId")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("created_at")
    @classmethod
    def naive_utc(cls, value: datetime) -> datetime:
        # Stored timestamps are naive UTC so they stay comparable
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @field_validator("selected_seats")
    @classmethod
    def unique_seats(cls, value: List[str]) -> List[str]:
        if len(set(value)) != len(value):
            raise ValueError("selectedSeats must not contain duplicates")
        return value

    @model_validator(mode="after")
    def check_payment_fields(self) -> "Booking":
        if self.payment_status == PaymentStatus.COMPLETED and not self.mpesa_code:
            raise ValueError("a Completed booking must carry an mpesaCode")
        if not self.seats and self.selected_seats:
            self.seats = len(self.selected_seats)
        return self

    @property
    def is_completed(self) -> bool:
        return self.payment_status == PaymentStatus.COMPLETED

    @property
    def amount_due(self) -> int:
        """Fare in KES for the reserved seats."""
        return self.seats * SEAT_PRICE_KES

    def mark_completed(self, receipt: str) -> bool:
        """Transition to Completed with the given receipt.

        Returns:
            True if the booking changed, False if it was already Completed
            (the existing receipt is kept).

        Raises:
            ValueError: If the receipt is empty.
        """
        if not receipt:
            raise ValueError("receipt is required to complete a booking")
        if self.is_completed:
            return False
        self.mpesa_code = receipt
        self.payment_status = PaymentStatus.COMPLETED
        return True

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation using the record field names."""
        return self.model_dump(by_alias=True, mode="json")


class BookingCreate(BaseModel):
    """Fields a customer submits when reserving seats."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    phone_number: str = Field(..., alias="phoneNumber")
    residence: str = ""
    departure_date: date = Field(..., alias="departureDate")
    departure_time: str = Field(default="", alias="departureTime")
    route: str = Field(..., min_length=1)
    selected_seats: List[str] = Field(..., alias="selectedSeats", min_length=1)
    payer_phone: Optional[str] = Field(
        default=None,
        alias="payerPhone",
        description="M-Pesa number to charge; no STK push is sent when omitted",
    )

    @field_validator("phone_number", "payer_phone", mode="before")
    @classmethod
    def phone_as_text(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value
