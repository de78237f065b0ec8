"""Client-side polling of a payer's bookings until the payment settles."""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import httpx

from .bookings.models import Booking

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_POLL_TIMEOUT = 300.0

StatusFetcher = Callable[[str], Awaitable[List[Booking]]]


class PollState(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class PollOutcome:
    """Terminal result of a polling run."""
    state: PollState
    booking: Optional[Booking]
    attempts: int
    elapsed: float


class PaymentStatusPoller:
    """Polls the status query for a phone number until its booking is Completed.

    The first booking returned (latest departure) is the one tracked. The run
    ends COMPLETED as soon as that booking is Completed, TIMED_OUT once more
    than ``timeout`` seconds have passed since the first poll, or CANCELLED
    when :meth:`cancel` is called. Fetch failures are logged and retried on
    the next tick.
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        phone: str,
        interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_POLL_TIMEOUT,
        fallback_booking: Optional[Booking] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval < 0:
            raise ValueError("interval must not be negative")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.fetch_status = fetch_status
        self.phone = phone
        self.interval = interval
        self.timeout = timeout
        self.fallback_booking = fallback_booking
        self._clock = clock
        self._cancelled = asyncio.Event()
        self.state = PollState.IDLE

    def cancel(self) -> None:
        """Stop the run at the next opportunity, waking it if it is sleeping."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def run(self) -> PollOutcome:
        if self.state != PollState.IDLE:
            raise RuntimeError(f"Poller already {self.state.value}")

        self.state = PollState.POLLING
        started = self._clock()
        latest = self.fallback_booking
        attempts = 0
        logger.info(f"Polling payment status for {self.phone} every {self.interval}s")

        while True:
            if self.cancelled:
                return self._finish(PollState.CANCELLED, latest, attempts, self._clock() - started)

            attempts += 1
            try:
                bookings = await self.fetch_status(self.phone)
            except Exception as e:
                # Any failed check is retried until the timeout
                logger.warning(f"Status check {attempts} for {self.phone} failed: {type(e).__name__}: {e}")
            else:
                if bookings:
                    latest = bookings[0]
                    if latest.is_completed:
                        return self._finish(PollState.COMPLETED, latest, attempts, self._clock() - started)

            elapsed = self._clock() - started
            if elapsed > self.timeout:
                logger.warning(f"Payment for {self.phone} not confirmed after {elapsed:.0f}s")
                return self._finish(PollState.TIMED_OUT, latest, attempts, elapsed)

            try:
                await asyncio.wait_for(self._cancelled.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def _finish(
        self,
        state: PollState,
        booking: Optional[Booking],
        attempts: int,
        elapsed: float,
    ) -> PollOutcome:
        self.state = state
        logger.info(f"Polling for {self.phone} ended {state.value} after {attempts} attempt(s)")
        return PollOutcome(state=state, booking=booking, attempts=attempts, elapsed=elapsed)


class HttpStatusFetcher:
    """Fetches ``GET /mpesa/status/{phone}`` from a running API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def __call__(self, phone: str) -> List[Booking]:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            response = await client.get(f"/mpesa/status/{phone}")
            response.raise_for_status()
            data = response.json()
        bookings = data.get("bookings") if isinstance(data, dict) else None
        if not isinstance(bookings, list):
            raise ValueError(f"Unexpected status response from {self.base_url}: {data!r}")
        return [Booking.model_validate(item) for item in bookings]
