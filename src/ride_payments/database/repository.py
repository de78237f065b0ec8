"""Repository and store implementation backed by SQLAlchemy."""

import logging
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from ..bookings.models import Booking
from ..bookings.store import BookingStore
from ..errors import StoreUnavailable
from .models import Base, BookingRecord
from .session import create_async_engine, get_async_session_factory

logger = logging.getLogger(__name__)


class BookingRepository:
    """Repository for booking rows."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def list_all(self) -> List[BookingRecord]:
        """Return all rows in store order."""
        result = await self.session.execute(
            select(BookingRecord).order_by(BookingRecord.position)
        )
        return list(result.scalars().all())

    async def get_by_id(self, booking_id: str) -> Optional[BookingRecord]:
        result = await self.session.execute(
            select(BookingRecord).where(BookingRecord.id == booking_id)
        )
        return result.scalar_one_or_none()

    async def replace_all(self, bookings: List[Booking]) -> None:
        """Replace every row with ``bookings``, keeping their order.

        Args:
            bookings: Complete booking collection to persist.
        """
        await self.session.execute(delete(BookingRecord))
        self.session.add_all(
            BookingRecord.from_booking(booking, position)
            for position, booking in enumerate(bookings)
        )
        await self.session.flush()
        logger.debug(f"Replaced booking table with {len(bookings)} rows")


class SqlBookingStore(BookingStore):
    """Booking store on an async SQLAlchemy engine (SQLite or PostgreSQL).

    Example:
        store = SqlBookingStore("sqlite+aiosqlite:///./bookings.db")
        await store.initialize()
        bookings = await store.load_all()
        await store.close()
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        echo: bool = False,
        engine: Optional[AsyncEngine] = None,
    ):
        super().__init__()
        self._engine = engine or create_async_engine(database_url, echo=echo)
        self._session_factory = get_async_session_factory(self._engine)

    async def initialize(self, create_tables: bool = True) -> None:
        """Create the bookings table if it does not exist."""
        if create_tables:
            try:
                async with self._engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
            except SQLAlchemyError as e:
                logger.error(f"Failed to create booking tables: {e}")
                raise StoreUnavailable("Failed to initialize booking store", details=str(e)) from e
            logger.info("Booking tables ready.")

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Database connection closed.")

    async def load_all(self) -> List[Booking]:
        try:
            async with self._session_factory() as session:
                records = await BookingRepository(session).list_all()
                return [record.to_booking() for record in records]
        except SQLAlchemyError as e:
            logger.error(f"Failed to load bookings: {e}")
            raise StoreUnavailable("Failed to read bookings", details=str(e)) from e
        except (ValueError, ValidationError) as e:
            logger.error(f"Stored booking row is invalid: {e}")
            raise StoreUnavailable("Failed to read bookings", details=str(e)) from e

    async def save_all(self, bookings: List[Booking]) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await BookingRepository(session).replace_all(bookings)
        except SQLAlchemyError as e:
            logger.error(f"Failed to save bookings: {e}")
            raise StoreUnavailable("Failed to write bookings", details=str(e)) from e
