"""Database module for booking persistence."""

from .models import (
    Base,
    BookingRecord,
)
from .session import (
    get_database_url,
    create_async_engine,
    get_async_session_factory,
)
from .repository import (
    BookingRepository,
    SqlBookingStore,
)

__all__ = [
    # Models
    "Base",
    "BookingRecord",
    # Session management
    "get_database_url",
    "create_async_engine",
    "get_async_session_factory",
    # Repositories
    "BookingRepository",
    "SqlBookingStore",
]
