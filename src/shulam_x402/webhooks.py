"""Verification of facilitator webhook signatures.

Webhooks carry an ``X-Shulam-Signature`` header holding an HMAC-SHA256 digest
of the exact request body bytes, keyed with the merchant's webhook secret. The
digest may be sent as lowercase hex or as base64 (standard or url-safe
alphabet, canonical encoding only), with an optional ``sha256=`` prefix.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Shulam-Signature"
SIGNATURE_PREFIX = "sha256="

_DIGEST_SIZE = hashlib.sha256().digest_size
_HEX_PATTERN = re.compile(r"^[0-9a-f]{%d}$" % (_DIGEST_SIZE * 2))
_BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/_-]+={0,2}$")


def _as_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def compute_webhook_signature(
    payload_bytes: bytes, secret: Union[str, bytes]
) -> str:
    """Return the hex digest a sender puts in the signature header."""
    return hmac.new(_as_bytes(secret), payload_bytes, hashlib.sha256).hexdigest()


def _parse_signature_header(signature_header: str) -> Optional[bytes]:
    """Decode the header digest, accepting only its canonical spelling.

    Hex must be lowercase and base64 must re-encode to the same text (padding
    aside), so no two distinct header values verify for one digest.
    """
    value = signature_header.strip()
    if value.lower().startswith(SIGNATURE_PREFIX):
        value = value[len(SIGNATURE_PREFIX):]

    if _HEX_PATTERN.match(value):
        return bytes.fromhex(value)

    if not _BASE64_PATTERN.match(value):
        return None
    stripped = value.rstrip("=")
    padded = stripped + "=" * (-len(stripped) % 4)
    urlsafe = "-" in padded or "_" in padded
    try:
        if urlsafe:
            decoded = base64.urlsafe_b64decode(padded)
        else:
            decoded = base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(decoded) != _DIGEST_SIZE:
        return None

    encode = base64.urlsafe_b64encode if urlsafe else base64.b64encode
    if encode(decoded).decode("ascii").rstrip("=") != stripped:
        return None
    return decoded


def verify_webhook_signature(
    payload_bytes: bytes,
    signature_header: Optional[str],
    secret: Union[str, bytes],
) -> bool:
    """Check a webhook signature in constant time.

    Args:
        payload_bytes: Body exactly as received, never a re-serialized form
        signature_header: Value of the ``X-Shulam-Signature`` header
        secret: Shared webhook secret

    Returns:
        True iff the header holds the HMAC-SHA256 of ``payload_bytes`` under
        ``secret``. Any malformed header yields False.
    """
    if not isinstance(signature_header, str) or not signature_header:
        return False
    if not isinstance(payload_bytes, (bytes, bytearray, memoryview)):
        return False

    expected = hmac.new(_as_bytes(secret), bytes(payload_bytes), hashlib.sha256).digest()
    provided = _parse_signature_header(signature_header)
    if provided is None:
        logger.debug("Rejected webhook with unparseable signature header")
        return False

    return hmac.compare_digest(expected, provided)


@dataclass(frozen=True)
class WebhookEnvelope:
    """A received webhook: exact body bytes, its signature header and the secret."""

    payload_bytes: bytes
    signature_header: Optional[str]
    secret: Union[str, bytes]

    def verify(self) -> bool:
        return verify_webhook_signature(
            self.payload_bytes, self.signature_header, self.secret
        )

    def __repr__(self) -> str:
        return (
            f"WebhookEnvelope(payload_bytes=<{len(self.payload_bytes)} bytes>, "
            f"signature_header={self.signature_header!r}, secret=<redacted>)"
        )
