import base64
import hashlib
import hmac
import string
from unittest.mock import patch

import pytest

from shulam_x402.webhooks import (
    WebhookEnvelope,
    compute_webhook_signature,
    verify_webhook_signature,
)

SECRET = "s3cr3t"
PAYLOAD = b'{"event":"settled"}'
HEX_DIGITS = "0123456789abcdef"
BASE64_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits + "+/"


def _digest(payload: bytes = PAYLOAD, secret: str = SECRET) -> bytes:
    return hmac.new(secret.encode(), payload, hashlib.sha256).digest()


HEX_SIGNATURE = _digest().hex()
BASE64_SIGNATURE = base64.b64encode(_digest()).decode()


def _flip_hex(signature: str, position: int) -> str:
    char = HEX_DIGITS[HEX_DIGITS.index(signature[position]) ^ 1]
    return signature[:position] + char + signature[position + 1:]


def _flip_base64(signature: str, position: int) -> str:
    current = signature[position]
    if current == "=":
        char = "A"
    else:
        char = BASE64_ALPHABET[BASE64_ALPHABET.index(current) ^ 1]
    return signature[:position] + char + signature[position + 1:]


def test_compute_webhook_signature():
    assert compute_webhook_signature(PAYLOAD, SECRET) == HEX_SIGNATURE
    assert compute_webhook_signature(PAYLOAD, SECRET.encode()) == HEX_SIGNATURE


def test_valid_hex_signature():
    assert verify_webhook_signature(PAYLOAD, HEX_SIGNATURE, SECRET) is True


def test_tampered_body_is_rejected():
    tampered = PAYLOAD.replace(b"settled", b"settlee")
    assert verify_webhook_signature(tampered, HEX_SIGNATURE, SECRET) is False


def test_wrong_secret_is_rejected():
    assert verify_webhook_signature(PAYLOAD, HEX_SIGNATURE, "other") is False


@pytest.mark.parametrize("position", range(len(PAYLOAD)))
def test_any_payload_byte_flip_is_rejected(position):
    tampered = PAYLOAD[:position] + bytes([PAYLOAD[position] ^ 1]) + PAYLOAD[position + 1:]
    assert verify_webhook_signature(tampered, HEX_SIGNATURE, SECRET) is False


@pytest.mark.parametrize("position", range(len(HEX_SIGNATURE)))
def test_any_hex_character_flip_is_rejected(position):
    assert verify_webhook_signature(PAYLOAD, _flip_hex(HEX_SIGNATURE, position), SECRET) is False


@pytest.mark.parametrize("position", range(len(BASE64_SIGNATURE)))
def test_any_base64_character_flip_is_rejected(position):
    tampered = _flip_base64(BASE64_SIGNATURE, position)
    assert verify_webhook_signature(PAYLOAD, tampered, SECRET) is False


@pytest.mark.parametrize(
    "header",
    [
        "sha256=" + HEX_SIGNATURE,
        BASE64_SIGNATURE,
        BASE64_SIGNATURE.rstrip("="),
        base64.urlsafe_b64encode(_digest()).decode().rstrip("="),
    ],
)
def test_accepted_signature_formats(header):
    assert verify_webhook_signature(PAYLOAD, header, SECRET) is True


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "zz",
        "sha256=",
        "not a signature",
        # right encoding, wrong length
        HEX_SIGNATURE[:-2],
        base64.b64encode(_digest()[:16]).decode(),
        # same digest, non-canonical spelling
        HEX_SIGNATURE.upper(),
        _flip_base64(BASE64_SIGNATURE, len(BASE64_SIGNATURE) - 2),
    ],
)
def test_malformed_signature_is_rejected(header):
    assert verify_webhook_signature(PAYLOAD, header, SECRET) is False


@pytest.mark.parametrize(
    "header,expected",
    [
        (HEX_SIGNATURE, True),
        (_flip_hex(HEX_SIGNATURE, 0), False),
        (_flip_hex(HEX_SIGNATURE, len(HEX_SIGNATURE) - 1), False),
    ],
)
def test_digests_compared_in_constant_time(header, expected):
    with patch(
        "shulam_x402.webhooks.hmac.compare_digest", wraps=hmac.compare_digest
    ) as compare:
        assert verify_webhook_signature(PAYLOAD, header, SECRET) is expected

    compare.assert_called_once_with(_digest(), bytes.fromhex(header))


def test_non_bytes_payload_is_rejected():
    assert verify_webhook_signature(PAYLOAD.decode(), HEX_SIGNATURE, SECRET) is False  # type: ignore


def test_envelope():
    envelope = WebhookEnvelope(PAYLOAD, HEX_SIGNATURE, SECRET)

    assert envelope.verify() is True
    assert SECRET not in repr(envelope)
    assert WebhookEnvelope(PAYLOAD, "00" * 32, SECRET).verify() is False
