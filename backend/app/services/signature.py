"""HMAC-SHA256 verification of OpenPix webhook deliveries.

The provider signs the exact request body bytes with the shared webhook
secret and sends the digest in ``x-openpix-signature``, either hex or base64
encoded depending on the account's configuration. Verification therefore has
to run on the raw body, before any JSON decoding.
"""
import base64
import binascii
import hashlib
import hmac
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-openpix-signature"

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def decode_signature(signature: Optional[str]) -> Optional[bytes]:
    """Decode a signature header value to raw digest bytes.

    Pure hex-digit strings of even length are read as hex, anything else as
    base64. Returns None when the value is empty or cannot be decoded.
    """
    if not signature:
        return None
    trimmed = signature.strip()
    if not trimmed:
        return None

    try:
        if _HEX_RE.match(trimmed) and len(trimmed) % 2 == 0:
            return bytes.fromhex(trimmed)
        return base64.b64decode(trimmed, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Failed to decode webhook signature: {e}")
        return None


def compute_signature(raw_body: bytes, secret: str) -> bytes:
    """Return the HMAC-SHA256 digest of ``raw_body`` keyed with ``secret``."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()


def sign(raw_body: bytes, secret: str, encoding: str = "hex") -> str:
    """Produce a header value the way the provider does ("hex" or "base64")."""
    digest = compute_signature(raw_body, secret)
    if encoding == "base64":
        return base64.b64encode(digest).decode("ascii")
    return digest.hex()


def verify_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    allow_unsigned: bool = False,
) -> bool:
    """
    Check a webhook signature against the configured secret.

    Args:
        raw_body: Request body exactly as received.
        signature_header: Value of the signature header, if any.
        secret: Shared webhook secret. Blank disables verification.
        allow_unsigned: Accept deliveries that carry no signature header.

    Returns:
        True when the delivery should be trusted.
    """
    secret = (secret or "").strip()
    if not secret:
        return True

    if not signature_header or not signature_header.strip():
        return allow_unsigned

    provided = decode_signature(signature_header)
    if provided is None:
        return False

    expected = compute_signature(raw_body, secret)
    # compare_digest is constant-time over equal-length inputs
    return hmac.compare_digest(expected, provided)
