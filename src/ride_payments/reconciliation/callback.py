"""Validation of the gateway's asynchronous STK callback payload."""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from ..errors import InvalidCallback
from .models import CallbackItem, StkCallback

logger = logging.getLogger(__name__)


def parse_stk_callback(payload: Any) -> StkCallback:
    """Parse a Daraja callback body into a ``StkCallback``.

    Expected shape::

        {"Body": {"stkCallback": {"MerchantRequestID": ..., "CheckoutRequestID": ...,
                                  "ResultCode": 0, "ResultDesc": ...,
                                  "CallbackMetadata": {"Item": [{"Name": ..., "Value": ...}]}}}}

    Raises:
        InvalidCallback: If the envelope or its result code is not recognizable.
    """
    body = payload.get("Body") if isinstance(payload, dict) else None
    callback = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(callback, dict):
        logger.warning("Invalid callback format: missing Body.stkCallback")
        raise InvalidCallback("Invalid callback format")

    result_code = _parse_result_code(callback.get("ResultCode"))
    if result_code is None:
        logger.warning(f"Invalid callback ResultCode: {callback.get('ResultCode')!r}")
        raise InvalidCallback("Invalid callback format", details="ResultCode is missing or not an integer")

    metadata = callback.get("CallbackMetadata") or {}
    raw_items = metadata.get("Item") if isinstance(metadata, dict) else None
    items = []
    for raw in raw_items if isinstance(raw_items, list) else []:
        try:
            items.append(CallbackItem.model_validate(raw))
        except ValidationError:
            # Entries without a Name cannot be looked up; skip them
            logger.debug(f"Ignoring callback metadata entry {raw!r}")

    return StkCallback(
        merchant_request_id=callback.get("MerchantRequestID"),
        checkout_request_id=callback.get("CheckoutRequestID"),
        result_code=result_code,
        result_desc=callback.get("ResultDesc"),
        items=items,
    )


def _parse_result_code(value: Any) -> Optional[int]:
    """Return ``value`` as an integer code, or None if it is not one.

    Accepts ints and integer strings such as ``"0"`` or ``"-1"``. Floats,
    booleans and fractional strings are rejected rather than truncated.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        digits = text[1:] if text.startswith("-") else text
        if digits.isdigit():
            return int(text)
    return None
