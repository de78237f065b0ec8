"""SQLAlchemy models for booking persistence."""

import json
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import Date, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..bookings.models import Booking, PaymentStatus


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class BookingRecord(Base):
    """Row representation of a booking. ``position`` keeps store order."""
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    departure_date: Mapped[date] = mapped_column(Date, nullable=False)
    departure_time: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    route: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    seats: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    residence: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value
    )
    mpesa_code: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    checkout_request_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    merchant_request_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Seat labels stored as a JSON list
    selected_seats_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_bookings_phone_number", "phone_number"),
        Index("ix_bookings_checkout_request_id", "checkout_request_id"),
        Index("ix_bookings_position", "position"),
    )

    @property
    def selected_seats(self) -> List[str]:
        if self.selected_seats_json:
            return json.loads(self.selected_seats_json)
        return []

    @selected_seats.setter
    def selected_seats(self, value: Optional[List[str]]) -> None:
        self.selected_seats_json = json.dumps(list(value)) if value else None

    @classmethod
    def from_booking(cls, booking: Booking, position: int) -> "BookingRecord":
        record = cls(
            id=booking.id,
            position=position,
            phone_number=booking.phone_number,
            departure_date=booking.departure_date,
            departure_time=booking.departure_time,
            route=booking.route,
            seats=booking.seats,
            name=booking.name,
            residence=booking.residence,
            payment_status=booking.payment_status.value,
            mpesa_code=booking.mpesa_code,
            checkout_request_id=booking.checkout_request_id,
            merchant_request_id=booking.merchant_request_id,
            created_at=booking.created_at,
        )
        record.selected_seats = booking.selected_seats
        return record

    def to_booking(self) -> Booking:
        return Booking(
            id=self.id,
            phone_number=self.phone_number,
            departure_date=self.departure_date,
            departure_time=self.departure_time,
            route=self.route,
            selected_seats=self.selected_seats,
            seats=self.seats,
            name=self.name,
            residence=self.residence,
            payment_status=PaymentStatus(self.payment_status),
            mpesa_code=self.mpesa_code,
            created_at=self.created_at,
            checkout_request_id=self.checkout_request_id,
            merchant_request_id=self.merchant_request_id,
        )
