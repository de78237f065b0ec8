"""Booking store abstraction and the in-memory / JSON file implementations."""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import ValidationError

from ..errors import StoreUnavailable
from .models import Booking

logger = logging.getLogger(__name__)


class StoreTransaction:
    """Working copy of all bookings inside ``BookingStore.transaction()``.

    Changes are written back only when the transaction was marked dirty.
    """

    def __init__(self, bookings: List[Booking]):
        self.bookings = bookings
        self.dirty = False

    def get(self, booking_id: str) -> Optional[Booking]:
        for booking in self.bookings:
            if booking.id == booking_id:
                return booking
        return None

    def add(self, booking: Booking) -> Booking:
        self.bookings.append(booking)
        self.dirty = True
        return booking

    def mark_dirty(self) -> None:
        self.dirty = True


class BookingStore(ABC):
    """Key-ordered booking collection with read-all / write-all semantics.

    Every read-modify-write goes through ``transaction()``, which holds a
    single-writer lock from ``load_all`` to ``save_all``. Plain ``load_all``
    calls do not take the lock.
    """

    def __init__(self):
        self._write_lock = asyncio.Lock()

    @abstractmethod
    async def load_all(self) -> List[Booking]:
        """Return every booking in store order.

        Raises:
            StoreUnavailable: If the backing storage cannot be read.
        """
        raise NotImplementedError

    @abstractmethod
    async def save_all(self, bookings: List[Booking]) -> None:
        """Replace the stored collection with ``bookings``.

        Raises:
            StoreUnavailable: If the backing storage cannot be written.
        """
        raise NotImplementedError

    async def initialize(self) -> None:
        """Prepare backing storage. No-op by default."""

    async def close(self) -> None:
        """Release backing resources. No-op by default."""

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        async with self._write_lock:
            txn = StoreTransaction(await self.load_all())
            yield txn
            if txn.dirty:
                await self.save_all(txn.bookings)


class InMemoryBookingStore(BookingStore):
    """Process-local store. Reads return copies so callers never share state."""

    def __init__(self, bookings: Optional[List[Booking]] = None):
        super().__init__()
        self._bookings: List[Booking] = [b.model_copy(deep=True) for b in bookings or []]

    async def load_all(self) -> List[Booking]:
        return [b.model_copy(deep=True) for b in self._bookings]

    async def save_all(self, bookings: List[Booking]) -> None:
        self._bookings = [b.model_copy(deep=True) for b in bookings]


class JsonFileBookingStore(BookingStore):
    """Store backed by a JSON document of the form ``{"bookings": [...]}``.

    Other top-level keys in the document are preserved on write. Writes go to
    a temporary file that replaces the original, so readers always see a
    complete document.
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = path

    def _read_document(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {"bookings": []}
        with open(self.path, "r", encoding="utf-8") as f:
            document = json.load(f)
        if not isinstance(document, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return document

    def _write_document(self, document: Dict[str, Any]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".bookings-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def load_all(self) -> List[Booking]:
        try:
            document = await asyncio.to_thread(self._read_document)
            return [Booking.model_validate(item) for item in document.get("bookings", [])]
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Failed to read bookings from {self.path}: {e}")
            raise StoreUnavailable("Failed to read bookings", details=str(e)) from e

    async def save_all(self, bookings: List[Booking]) -> None:
        try:
            document = await asyncio.to_thread(self._read_document)
            document["bookings"] = [b.to_dict() for b in bookings]
            await asyncio.to_thread(self._write_document, document)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to write bookings to {self.path}: {e}")
            raise StoreUnavailable("Failed to write bookings", details=str(e)) from e
        logger.debug(f"Wrote {len(bookings)} bookings to {self.path}")
