"""Tests for the client-side payment status poller."""

import asyncio
import itertools
import pytest
import httpx

from ride_payments.errors import StoreUnavailable
from ride_payments.poller import (
    HttpStatusFetcher,
    PaymentStatusPoller,
    PollState,
)

PHONE = "254712345678"


def fake_clock(step):
    """Clock advancing ``step`` seconds per reading."""
    counter = itertools.count(step=step)
    return lambda: float(next(counter))


class ScriptedFetcher:
    """Status fetcher returning scripted results, one per call."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self, phone):
        self.calls += 1
        result = self.results[min(self.calls, len(self.results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result


class TestPaymentStatusPoller:
    """Tests for PaymentStatusPoller."""

    async def test_completes_when_booking_paid(self, make_booking):
        """Test that polling stops once the best match is Completed."""
        pending = make_booking()
        paid = pending.model_copy(deep=True)
        paid.mark_completed("QGR7XYZ123")
        fetcher = ScriptedFetcher([pending], [pending], [paid])

        poller = PaymentStatusPoller(fetcher, PHONE, interval=0, timeout=300, clock=fake_clock(1))
        outcome = await poller.run()

        assert outcome.state == PollState.COMPLETED
        assert outcome.booking.mpesa_code == "QGR7XYZ123"
        assert outcome.attempts == 3
        assert poller.state == PollState.COMPLETED

    async def test_never_completing_times_out(self, make_booking):
        """Test that a payment never confirmed ends TIMED_OUT with the last snapshot."""
        pending = make_booking()
        fetcher = ScriptedFetcher([pending])

        poller = PaymentStatusPoller(fetcher, PHONE, interval=0, timeout=300, clock=fake_clock(100))
        outcome = await poller.run()

        assert outcome.state == PollState.TIMED_OUT
        assert outcome.booking.id == pending.id
        assert not outcome.booking.is_completed
        assert outcome.elapsed > 300
        assert outcome.attempts == 4

    async def test_only_first_booking_considered(self, make_booking):
        """Test that a completed older booking does not end the poll."""
        latest = make_booking()
        older = make_booking()
        older.mark_completed("OLD0000001")
        fetcher = ScriptedFetcher([latest, older])

        outcome = await PaymentStatusPoller(
            fetcher, PHONE, interval=0, timeout=10, clock=fake_clock(5)
        ).run()

        assert outcome.state == PollState.TIMED_OUT
        assert outcome.booking.id == latest.id

    async def test_fallback_booking_when_nothing_found(self, make_booking):
        """Test that the caller's booking is reported if no snapshot arrived."""
        fallback = make_booking()
        fetcher = ScriptedFetcher([])

        outcome = await PaymentStatusPoller(
            fetcher, PHONE, interval=0, timeout=10, fallback_booking=fallback, clock=fake_clock(5)
        ).run()

        assert outcome.state == PollState.TIMED_OUT
        assert outcome.booking is fallback

    async def test_fetch_errors_do_not_stop_polling(self, make_booking):
        """Test that failed status checks are retried."""
        paid = make_booking()
        paid.mark_completed("QGR7XYZ123")
        fetcher = ScriptedFetcher(
            StoreUnavailable("Failed to read bookings"),
            httpx.ConnectError("connection refused"),
            [paid],
        )

        outcome = await PaymentStatusPoller(
            fetcher, PHONE, interval=0, timeout=300, clock=fake_clock(1)
        ).run()

        assert outcome.state == PollState.COMPLETED
        assert fetcher.calls == 3

    async def test_fetch_errors_do_not_reset_clock(self):
        """Test that errors still count towards the timeout."""
        fetcher = ScriptedFetcher(httpx.ConnectError("connection refused"))

        outcome = await PaymentStatusPoller(
            fetcher, PHONE, interval=0, timeout=300, clock=fake_clock(100)
        ).run()

        assert outcome.state == PollState.TIMED_OUT
        assert outcome.booking is None

    async def test_unexpected_errors_do_not_stop_polling(self, make_booking):
        """Test that any exception from the fetcher is retried."""
        paid = make_booking()
        paid.mark_completed("QGR7XYZ123")
        fetcher = ScriptedFetcher(RuntimeError("boom"), KeyError("bookings"), [paid])

        outcome = await PaymentStatusPoller(
            fetcher, PHONE, interval=0, timeout=300, clock=fake_clock(1)
        ).run()

        assert outcome.state == PollState.COMPLETED
        assert fetcher.calls == 3

    async def test_malformed_status_body_times_out(self):
        """Test that a status body without a bookings list keeps polling until timeout."""
        fetcher = HttpStatusFetcher(
            "http://api.test",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"success": True, "bookings": None})
            ),
        )

        outcome = await PaymentStatusPoller(
            fetcher, PHONE, interval=0, timeout=300, clock=fake_clock(100)
        ).run()

        assert outcome.state == PollState.TIMED_OUT
        assert outcome.attempts > 1

    async def test_cancel_wakes_sleeping_poller(self, make_booking):
        """Test that cancel() ends a run during its sleep."""
        fetcher = ScriptedFetcher([make_booking()])
        poller = PaymentStatusPoller(fetcher, PHONE, interval=60, timeout=300)

        task = asyncio.create_task(poller.run())
        await asyncio.sleep(0.05)
        poller.cancel()
        outcome = await asyncio.wait_for(task, timeout=1)

        assert outcome.state == PollState.CANCELLED
        assert outcome.attempts == 1

    async def test_cancel_before_run(self):
        """Test that a cancelled poller makes no requests."""
        fetcher = ScriptedFetcher([])
        poller = PaymentStatusPoller(fetcher, PHONE)
        poller.cancel()

        outcome = await poller.run()

        assert outcome.state == PollState.CANCELLED
        assert fetcher.calls == 0

    async def test_run_only_once(self):
        """Test that a finished poller cannot be restarted."""
        poller = PaymentStatusPoller(ScriptedFetcher([]), PHONE)
        poller.cancel()
        await poller.run()

        with pytest.raises(RuntimeError):
            await poller.run()

    def test_initial_state(self):
        """Test that a new poller is idle."""
        assert PaymentStatusPoller(ScriptedFetcher([]), PHONE).state == PollState.IDLE

    @pytest.mark.parametrize("interval,timeout", [(-1, 300), (3, 0)])
    def test_invalid_settings(self, interval, timeout):
        """Test that negative intervals and empty timeouts are rejected."""
        with pytest.raises(ValueError):
            PaymentStatusPoller(ScriptedFetcher([]), PHONE, interval=interval, timeout=timeout)


class TestHttpStatusFetcher:
    """Tests for HttpStatusFetcher."""

    async def test_fetch(self, make_booking):
        """Test parsing the status endpoint response."""
        booking = make_booking()
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200, json={"success": True, "bookings": [booking.to_dict()]})

        fetcher = HttpStatusFetcher("http://api.test/", transport=httpx.MockTransport(handler))
        bookings = await fetcher(PHONE)

        assert seen == [f"/mpesa/status/{PHONE}"]
        assert [b.id for b in bookings] == [booking.id]

    async def test_http_error(self):
        """Test that error statuses raise."""
        fetcher = HttpStatusFetcher(
            "http://api.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, json={"success": False})),
        )
        with pytest.raises(httpx.HTTPStatusError):
            await fetcher(PHONE)

    @pytest.mark.parametrize("body", [
        {"success": True, "bookings": None},
        {"success": True},
        [{"id": "abc"}],
    ])
    async def test_unexpected_body(self, body):
        """Test that a body without a bookings list raises ValueError."""
        fetcher = HttpStatusFetcher(
            "http://api.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
        )
        with pytest.raises(ValueError):
            await fetcher(PHONE)
