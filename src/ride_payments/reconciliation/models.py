"""Models for gateway callbacks and their reconciliation outcome."""

import enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..errors import IncompleteCallback

# Acknowledgement Daraja expects for every structurally valid callback
CALLBACK_ACKNOWLEDGEMENT: Dict[str, str] = {"ResponseCode": "00000000", "ResponseDesc": "Success"}


class CallbackOutcomeStatus(str, enum.Enum):
    """What handling a callback did to the booking store."""
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    DUPLICATE = "duplicate"
    NO_MATCH = "no_match"
    PAYMENT_FAILED = "payment_failed"


class CallbackItem(BaseModel):
    """One ``{Name, Value}`` entry of ``CallbackMetadata.Item``."""
    name: str = Field(..., alias="Name")
    value: Any = Field(default=None, alias="Value")


class PaymentConfirmation(BaseModel):
    """The fields of a successful callback needed to complete a booking."""
    receipt: str
    phone: str
    amount: Optional[int] = None


class StkCallback(BaseModel):
    """Parsed ``Body.stkCallback`` envelope."""
    merchant_request_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    result_code: int
    result_desc: Optional[str] = None
    items: List[CallbackItem] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0

    def get_metadata(self, name: str) -> Any:
        """Value of the metadata item called ``name`` (lookup by name, not position)."""
        for item in self.items:
            if item.name == name:
                return item.value
        return None

    def confirmation(self) -> PaymentConfirmation:
        """Extract receipt, phone and amount.

        Raises:
            IncompleteCallback: If the receipt or phone number is missing.
        """
        receipt = self.get_metadata("MpesaReceiptNumber")
        phone = self.get_metadata("PhoneNumber")
        amount = self.get_metadata("Amount")

        if not receipt or not phone:
            raise IncompleteCallback(
                "Incomplete callback data",
                details={"missing": [
                    name for name, value in (("MpesaReceiptNumber", receipt), ("PhoneNumber", phone))
                    if not value
                ]},
            )

        # Daraja sends PhoneNumber (and sometimes Amount) as JSON numbers
        if isinstance(phone, float) and phone.is_integer():
            phone = int(phone)
        try:
            amount = int(amount) if amount is not None else None
        except (TypeError, ValueError):
            amount = None

        return PaymentConfirmation(receipt=str(receipt), phone=str(phone), amount=amount)


class CallbackOutcome(BaseModel):
    """Result of handling one callback delivery."""
    status: CallbackOutcomeStatus
    result_code: int
    result_desc: Optional[str] = None
    checkout_request_id: Optional[str] = None
    booking_id: Optional[str] = None
    receipt: Optional[str] = None
    phone: Optional[str] = None
    amount: Optional[int] = None
    matched_by: Optional[str] = Field(
        default=None, description="'checkout_request_id' or 'phone' when a booking was found"
    )
