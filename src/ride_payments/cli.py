#!/usr/bin/env python3
"""Command-line client for the ride payments API.

Starts an M-Pesa payment through a running API and waits for the callback
to settle it, the way the booking page does.

Usage:
    ride-payments pay --phone 0712345678 --amount 2000 --booking-id 3f2a...
    ride-payments status --phone 254712345678
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Any, Dict, Optional

import httpx

from .errors import GatewayError, InvalidRequest, RidePaymentsError
from .phone import normalize_phone
from .poller import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_POLL_TIMEOUT,
    HttpStatusFetcher,
    PaymentStatusPoller,
    PollState,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:5000"


async def initiate_payment(
    api_url: str,
    phone: str,
    amount: int,
    booking_id: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """POST /mpesa/stk and return the response body.

    Raises:
        GatewayError: If the API reports a failure.
    """
    payload: Dict[str, Any] = {"phone": phone, "amount": amount}
    if booking_id:
        payload["bookingId"] = booking_id

    async with httpx.AsyncClient(base_url=api_url.rstrip("/"), timeout=30.0, transport=transport) as client:
        response = await client.post("/mpesa/stk", json=payload)
    body = response.json()
    if response.status_code >= 400 or not body.get("success"):
        raise GatewayError(body.get("error", "STK push failed"), details=body.get("details"))
    return body


async def run_pay_async(
    api_url: str,
    phone: str,
    amount: int,
    booking_id: Optional[str] = None,
    status_phone: Optional[str] = None,
    interval: float = DEFAULT_POLL_INTERVAL,
    timeout: float = DEFAULT_POLL_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """Initiate a payment then poll until it completes.

    Args:
        api_url: Base URL of the ride payments API.
        phone: M-Pesa number to charge.
        amount: Amount in KES.
        booking_id: Booking the payment is for, if known.
        status_phone: Phone number the booking was made with. Defaults to ``phone``.
        interval: Seconds between status checks.
        timeout: Seconds to wait for confirmation.
        transport: Optional httpx transport (for testing).

    Returns:
        Exit code (0 completed, 1 timed out or cancelled, 2 failure).
    """
    try:
        poll_phone = normalize_phone(status_phone or phone)
    except InvalidRequest as e:
        logger.error(e.message)
        return 1

    try:
        result = await initiate_payment(api_url, phone, amount, booking_id, transport=transport)
    except (httpx.HTTPError, RidePaymentsError, ValueError) as e:
        details = getattr(e, "details", None)
        logger.error(f"Payment initiation failed: {e} {details or ''}".rstrip())
        return 2

    logger.info(f"STK push sent, checkout {result.get('checkoutRequestID')}. Waiting for confirmation...")

    poller = PaymentStatusPoller(
        HttpStatusFetcher(api_url, transport=transport),
        poll_phone,
        interval=interval,
        timeout=timeout,
    )
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, poller.cancel)
    except (NotImplementedError, RuntimeError):
        # Signal handlers are unavailable on this platform or thread
        pass

    try:
        outcome = await poller.run()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    if outcome.booking is not None:
        print(json.dumps(outcome.booking.to_dict(), indent=2))

    if outcome.state == PollState.COMPLETED:
        logger.info(f"Payment confirmed: {outcome.booking.mpesa_code}")
        return 0
    if outcome.state == PollState.TIMED_OUT:
        logger.warning("Payment not confirmed in time. Check the status later or mark the booking as paid.")
    else:
        logger.info("Stopped waiting for payment confirmation")
    return 1


async def run_status_async(
    api_url: str,
    phone: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """Print the bookings for ``phone`` as JSON."""
    try:
        bookings = await HttpStatusFetcher(api_url, transport=transport)(phone)
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Status query failed: {e}")
        return 2
    print(json.dumps([b.to_dict() for b in bookings], indent=2))
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="ride-payments",
        description="M-Pesa payment tools for ride bookings.",
    )
    parser.add_argument(
        "--api-url",
        default=os.getenv("RIDE_PAYMENTS_API_URL", DEFAULT_API_URL),
        help=f"Base URL of the payments API (default: {DEFAULT_API_URL})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    pay_parser = subparsers.add_parser("pay", help="Send an STK push and wait for confirmation")
    pay_parser.add_argument("--phone", "-p", required=True, help="M-Pesa number to charge (07... or 254...)")
    pay_parser.add_argument("--amount", "-a", required=True, type=int, help="Amount in KES")
    pay_parser.add_argument("--booking-id", "-b", help="Booking the payment is for")
    pay_parser.add_argument(
        "--status-phone",
        help="Phone number the booking was made with (default: --phone)",
    )
    pay_parser.add_argument(
        "--interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help=f"Seconds between status checks (default: {DEFAULT_POLL_INTERVAL:g})",
    )
    pay_parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_POLL_TIMEOUT,
        help=f"Seconds to wait for confirmation (default: {DEFAULT_POLL_TIMEOUT:g})",
    )

    status_parser = subparsers.add_parser("status", help="Show bookings for a phone number")
    status_parser.add_argument("--phone", "-p", required=True, help="Phone number exactly as stored")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    if parsed_args.command == "pay":
        if parsed_args.amount <= 0:
            logger.error("Amount must be a positive number of KES")
            return 1
        return asyncio.run(run_pay_async(
            api_url=parsed_args.api_url,
            phone=parsed_args.phone,
            amount=parsed_args.amount,
            booking_id=parsed_args.booking_id,
            status_phone=parsed_args.status_phone,
            interval=parsed_args.interval,
            timeout=parsed_args.timeout,
        ))

    if parsed_args.command == "status":
        return asyncio.run(run_status_async(parsed_args.api_url, parsed_args.phone))

    return 0


if __name__ == "__main__":
    sys.exit(main())
