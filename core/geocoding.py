"""
Geocode record helpers.

A point's ``geocode`` field holds either a resolved address or an error
entry. Error entries record whether the failure is worth retrying so that
the bulk reverse-geocoding job can pick retryable failures up again on its
next run without hammering addresses that can never resolve.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

RETRYABLE_PATTERNS = (
    "rate limit",
    "timeout",
    "network",
    "connection",
    "temporary",
    "service unavailable",
    "too many requests",
    "quota exceeded",
    "deadlock",
    "database update error",
)

NON_RETRYABLE_PATTERNS = (
    "invalid coordinates",
    "coordinates out of bounds",
    "no results found",
    "address not found",
    "invalid address",
    "unable to geocode",
    "all nominatim endpoints failed",
)

# Ordered place-name fields, most specific settlement first
PLACE_NAME_FIELDS = ("city", "town", "village", "municipality", "suburb")


def is_error_geocode(geocode: Any) -> bool:
    return isinstance(geocode, dict) and bool(geocode.get("error"))


def is_retryable_error(geocode: Any) -> bool:
    """Explicit flags win, then message patterns; unknown errors are permanent."""
    if not is_error_geocode(geocode):
        return False
    if geocode.get("permanent"):
        return False
    if geocode.get("retryable"):
        return True

    message = str(geocode.get("error_message") or "").lower()
    if any(pattern in message for pattern in RETRYABLE_PATTERNS):
        return True
    if any(pattern in message for pattern in NON_RETRYABLE_PATTERNS):
        return False
    return False


def needs_geocoding(geocode: Any) -> bool:
    if geocode is None:
        return True
    if isinstance(geocode, dict) and not geocode:
        return True
    return is_retryable_error(geocode)


def classify_error_message(message: str) -> bool:
    """Return True when ``message`` describes a retryable failure."""
    return is_retryable_error({"error": True, "error_message": message})


def build_error_geocode(message: str, *, retryable: bool | None = None) -> dict[str, Any]:
    if retryable is None:
        retryable = classify_error_message(message)
    entry: dict[str, Any] = {
        "error": True,
        "error_message": message,
        "failed_at": datetime.now(UTC).isoformat(),
    }
    if retryable:
        entry["retryable"] = True
    else:
        entry["permanent"] = True
    return entry


def extract_place_name(geocode: Any) -> str | None:
    """Best settlement name from a geocode record, or None."""
    if not isinstance(geocode, dict) or is_error_geocode(geocode):
        return None
    address = geocode.get("address")
    if not isinstance(address, dict):
        address = {}
    for key in PLACE_NAME_FIELDS:
        value = address.get(key) or geocode.get(key)
        if value:
            return str(value)
    name = geocode.get("name")
    return str(name) if name else None
