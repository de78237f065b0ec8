"""Shared test fixtures and configuration."""

import os
import pytest
from datetime import date
from typing import Any, Dict, Optional

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MPESA_CONSUMER_KEY", "test_consumer_key")
os.environ.setdefault("MPESA_CONSUMER_SECRET", "test_consumer_secret")
os.environ.setdefault("MPESA_SHORTCODE", "174379")
os.environ.setdefault("MPESA_PASSKEY", "test_passkey")
os.environ.setdefault("MPESA_CALLBACK_URL", "https://example.test/mpesa/callback")

from ride_payments.auth import limiter
from ride_payments.bookings import Booking, InMemoryBookingStore
from ride_payments.config import MpesaConfig
from ride_payments.connectors import SimulatorConnector


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Rate limit counters are process-wide; start every test from zero."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def mpesa_config() -> MpesaConfig:
    """Return a sandbox configuration with dummy credentials."""
    return MpesaConfig(
        consumer_key="test_consumer_key",
        consumer_secret="test_consumer_secret",
        shortcode="174379",
        passkey="test_passkey",
        callback_url="https://example.test/mpesa/callback",
    )


@pytest.fixture
def make_booking():
    """Factory for bookings with sensible defaults."""
    def _make(**overrides) -> Booking:
        data: Dict[str, Any] = {
            "phone_number": "254712345678",
            "departure_date": date(2024, 5, 1),
            "departure_time": "08:00",
            "route": "Nairobi - Mombasa",
            "selected_seats": ["A1", "A2"],
            "name": "Jane Wanjiru",
            "residence": "Westlands",
        }
        data.update(overrides)
        return Booking(**data)
    return _make


@pytest.fixture
def make_callback():
    """Factory for Daraja STK callback bodies."""
    def _make(
        receipt: Optional[str] = "QGR7XYZ123",
        phone: Optional[Any] = 254712345678,
        amount: Optional[Any] = 2000,
        result_code: Any = 0,
        result_desc: str = "The service request is processed successfully.",
        checkout_request_id: str = "ws_CO_191220191020363925",
        merchant_request_id: str = "29115-34620561-1",
    ) -> Dict[str, Any]:
        stk_callback: Dict[str, Any] = {
            "MerchantRequestID": merchant_request_id,
            "CheckoutRequestID": checkout_request_id,
            "ResultCode": result_code,
            "ResultDesc": result_desc,
        }
        if result_code == 0:
            items = []
            if amount is not None:
                items.append({"Name": "Amount", "Value": amount})
            if receipt is not None:
                items.append({"Name": "MpesaReceiptNumber", "Value": receipt})
            items.append({"Name": "TransactionDate", "Value": 20240501102115})
            if phone is not None:
                items.append({"Name": "PhoneNumber", "Value": phone})
            stk_callback["CallbackMetadata"] = {"Item": items}
        return {"Body": {"stkCallback": stk_callback}}
    return _make


@pytest.fixture
def memory_store():
    """Empty in-memory booking store."""
    return InMemoryBookingStore()


@pytest.fixture
def simulator():
    """Simulator connector with reproducible receipts."""
    from ride_payments.connectors import SimulatorConfig
    return SimulatorConnector(SimulatorConfig(seed=42))


@pytest.fixture
def auth_headers():
    """Return headers with the admin API key."""
    return {"Authorization": "Bearer test_api_key_12345"}


# Database fixtures for integration tests
@pytest.fixture
async def test_db_engine():
    """Create an in-memory SQLite database for testing."""
    from ride_payments.database import Base, create_async_engine

    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db_session(test_db_engine):
    """Create a database session for testing."""
    from ride_payments.database import get_async_session_factory

    session_factory = get_async_session_factory(test_db_engine)
    async with session_factory() as session:
        yield session
