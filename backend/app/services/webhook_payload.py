"""Field probing for OpenPix webhook payloads.

OpenPix sends structurally different JSON depending on the event variant
(charge events, transaction events, the older ``eventData`` envelope). Each
field of interest is described as an ordered tuple of key paths; the first
path that yields a usable value wins.
"""
from typing import Any, Optional

EVENT_TYPE_KEYS = ("event", "type", "eventType")
COMPLETED_MARKER = "completed"

CORRELATION_ID_PATHS = (
    ("correlationID",),
    ("charge", "correlationID"),
    ("data", "charge", "correlationID"),
    ("transaction", "correlationID"),
    ("eventData", "charge", "correlationID"),
    ("pix", "charge", "correlationID"),
    ("data", "transaction", "correlationID"),
)

PAYMENT_REFERENCE_PATHS = (
    ("transaction", "id"),
    ("charge", "id"),
    ("data", "transaction", "id"),
    ("id",),
)

CUSTOMER_EMAIL_PATHS = (
    ("customerEmail",),
    ("customer", "email"),
    ("charge", "customer", "email"),
    ("transaction", "customer", "email"),
    ("data", "customer", "email"),
    ("data", "charge", "customer", "email"),
)


def dig(payload: Any, path: tuple[str, ...]) -> Any:
    """Follow ``path`` through nested dicts, returning None on any miss."""
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def first_string(payload: Any, paths: tuple[tuple[str, ...], ...]) -> Optional[str]:
    """Return the first non-blank string found along ``paths``, stripped."""
    for path in paths:
        candidate = dig(payload, path)
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def extract_event_type(payload: dict) -> Optional[str]:
    for key in EVENT_TYPE_KEYS:
        value = payload.get(key)
        if value:
            return str(value)
    return None


def is_completion_event(event_type: Optional[str]) -> bool:
    """Payloads without an event field are treated as completions."""
    if not event_type:
        return True
    return COMPLETED_MARKER in event_type.lower()


def extract_correlation_id(payload: Any) -> Optional[str]:
    return first_string(payload, CORRELATION_ID_PATHS)


def extract_payment_reference(payload: Any) -> Optional[str]:
    for path in PAYMENT_REFERENCE_PATHS:
        candidate = dig(payload, path)
        if candidate:
            return str(candidate)
    return None


def extract_customer_email(payload: Any) -> Optional[str]:
    email = first_string(payload, CUSTOMER_EMAIL_PATHS)
    return email.lower() if email else None
