"""Exceptions raised by the payment confirmation subsystem."""

from typing import Any, Optional


class RidePaymentsError(Exception):
    """Base class for all errors raised by this package."""
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidRequest(RidePaymentsError):
    """Client supplied fields are missing or malformed. No network call was made."""
    status_code = 400


class BookingNotFound(RidePaymentsError):
    status_code = 404


class GatewayError(RidePaymentsError):
    """The credential or STK push call failed or returned an error body.

    ``details`` holds the gateway response body when one was received,
    otherwise the transport error message.
    """
    status_code = 500


class InvalidCallback(RidePaymentsError):
    """Callback payload has no recognizable ``Body.stkCallback`` envelope."""
    status_code = 400


class IncompleteCallback(RidePaymentsError):
    """A successful callback is missing the receipt number or phone number."""
    status_code = 400


class StoreUnavailable(RidePaymentsError):
    """The booking store could not be read or written."""
    status_code = 500


class NoMatch(RidePaymentsError):
    """No booking matches a callback.

    Caught by the reconciliation service and turned into a NO_MATCH outcome;
    the gateway still receives the normal acknowledgement.
    """
