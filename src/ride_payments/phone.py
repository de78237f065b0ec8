"""Subscriber number normalisation."""

import re

from .errors import InvalidRequest

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """Normalize a Kenyan subscriber number to the 2547XXXXXXXX form the gateway expects.

    Accepts ``07XXXXXXXX``/``01XXXXXXXX``, ``7XXXXXXXX``/``1XXXXXXXX`` and
    ``254XXXXXXXXX``, with or without separators or a leading ``+``.

    Raises:
        InvalidRequest: If the number cannot be normalized.
    """
    if phone is None:
        raise InvalidRequest("Phone number is required")
    cleaned = _NON_DIGITS.sub("", str(phone))

    if cleaned.startswith("0") and len(cleaned) == 10:
        return "254" + cleaned[1:]
    if cleaned[:1] in ("7", "1") and len(cleaned) == 9:
        return "254" + cleaned
    if cleaned.startswith("254") and len(cleaned) == 12:
        return cleaned

    raise InvalidRequest(
        "Invalid phone number format. Use 07... or 254...",
        details={"phone": str(phone)},
    )
