"""Gateway and application configuration read from the environment."""

import os
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

SANDBOX_BASE_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_BASE_URL = "https://api.safaricom.co.ke"

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_ACCOUNT_REFERENCE = "Luxury Rides"
DEFAULT_TRANSACTION_DESC = "Payment for booking"


class MpesaConfig(BaseModel):
    """Credentials and endpoints for the Daraja STK push API."""
    consumer_key: str = Field(default="", description="Daraja app consumer key")
    consumer_secret: str = Field(default="", description="Daraja app consumer secret")
    shortcode: str = Field(default="", description="Paybill / till short code")
    passkey: str = Field(default="", description="Lipa na M-Pesa Online passkey")
    callback_url: str = Field(default="", description="Public URL of POST /mpesa/callback")
    environment: str = Field(default="sandbox")
    base_url: Optional[str] = Field(default=None, description="Overrides the environment base URL")
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    account_reference: str = Field(default=DEFAULT_ACCOUNT_REFERENCE)
    transaction_desc: str = Field(default=DEFAULT_TRANSACTION_DESC)

    # Optional hardening of the callback endpoint
    callback_secret: Optional[str] = None
    callback_allowed_ips: List[str] = Field(default_factory=list)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, value: str) -> str:
        value = value.lower()
        if value not in ("sandbox", "production"):
            raise ValueError("environment must be 'sandbox' or 'production'")
        return value

    @property
    def api_base_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        if self.environment == "production":
            return PRODUCTION_BASE_URL
        return SANDBOX_BASE_URL

    @property
    def token_url(self) -> str:
        return f"{self.api_base_url}/oauth/v1/generate?grant_type=client_credentials"

    @property
    def stk_push_url(self) -> str:
        return f"{self.api_base_url}/mpesa/stkpush/v1/processrequest"

    @classmethod
    def from_env(cls) -> "MpesaConfig":
        """Build the configuration from MPESA_* environment variables."""
        allowed_ips = os.getenv("MPESA_CALLBACK_ALLOWED_IPS", "")
        return cls(
            consumer_key=os.getenv("MPESA_CONSUMER_KEY", ""),
            consumer_secret=os.getenv("MPESA_CONSUMER_SECRET", ""),
            shortcode=os.getenv("MPESA_SHORTCODE", ""),
            passkey=os.getenv("MPESA_PASSKEY", ""),
            callback_url=os.getenv("MPESA_CALLBACK_URL", ""),
            environment=os.getenv("MPESA_ENVIRONMENT", "sandbox"),
            base_url=os.getenv("MPESA_BASE_URL") or None,
            request_timeout=float(os.getenv("MPESA_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)),
            account_reference=os.getenv("MPESA_ACCOUNT_REFERENCE", DEFAULT_ACCOUNT_REFERENCE),
            callback_secret=os.getenv("MPESA_CALLBACK_SECRET") or None,
            callback_allowed_ips=[ip.strip() for ip in allowed_ips.split(",") if ip.strip()],
        )


def get_bookings_json_path() -> Optional[str]:
    """Path of the JSON booking file, if the JSON store is selected."""
    return os.getenv("BOOKINGS_JSON_PATH") or None
