import base64
import binascii
import json
import re
from typing import Optional, Union

from pydantic import ValidationError

from shulam_x402.errors import CredentialDecodeError, ErrorReason
from shulam_x402.types import (
    PaymentCredential,
    PaymentRequiredResponse,
    PaymentRequirement,
    SettlementResult,
)

PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

# Generous upper bound; a real credential is well under 1 KiB
MAX_HEADER_LENGTH = 16 * 1024

_BASE64URL_PATTERN = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")


def safe_base64url_encode(data: Union[str, bytes]) -> str:
    """Encode string or bytes to unpadded base64url text.

    Args:
        data: String or bytes to encode

    Returns:
        Base64url encoded string without ``=`` padding
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def safe_base64url_decode(data: str) -> str:
    """Decode base64url text (padding optional) to a utf-8 string.

    Args:
        data: Base64url encoded string

    Returns:
        Decoded utf-8 string

    Raises:
        ValueError: If ``data`` is not base64url or not utf-8 once decoded
    """
    if not _BASE64URL_PATTERN.match(data):
        raise ValueError("input is not base64url text")
    stripped = data.rstrip("=")
    padded = stripped + "=" * (-len(stripped) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except binascii.Error as exc:
        raise ValueError(str(exc)) from exc
    return raw.decode("utf-8")


def build_requirement_response(
    requirement: PaymentRequirement,
    error: Optional[Union[ErrorReason, str]] = None,
) -> bytes:
    """Serialize a requirement into the JSON body of a 402 response.

    Args:
        requirement: Resolved requirement of the requested resource
        error: Optional reason code explaining why a credential was refused

    Returns:
        UTF-8 encoded JSON body
    """
    if isinstance(error, ErrorReason):
        error = error.value
    body = PaymentRequiredResponse.from_requirement(requirement, error=error)
    return body.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


def encode_credential_header(credential: PaymentCredential) -> str:
    """Encode a credential to its ``X-PAYMENT`` header value."""
    return safe_base64url_encode(
        credential.model_dump_json(by_alias=True, exclude_none=True)
    )


def decode_credential_header(header: Union[str, bytes]) -> PaymentCredential:
    """Decode an ``X-PAYMENT`` header value.

    The header is attacker controlled; every failure is reported as a
    :class:`CredentialDecodeError` carrying one of ``MalformedEncoding``,
    ``MalformedPayload`` or ``MissingField``.

    Args:
        header: Raw header value

    Returns:
        Decoded PaymentCredential object
    """
    if isinstance(header, bytes):
        try:
            header = header.decode("ascii")
        except UnicodeDecodeError:
            raise CredentialDecodeError(
                ErrorReason.MALFORMED_ENCODING, "header is not ascii"
            )
    if not isinstance(header, str):
        raise CredentialDecodeError(
            ErrorReason.MALFORMED_ENCODING, "header must be text"
        )

    header = header.strip()
    if len(header) > MAX_HEADER_LENGTH:
        raise CredentialDecodeError(
            ErrorReason.MALFORMED_ENCODING, "header is too long"
        )

    try:
        json_str = safe_base64url_decode(header)
    except ValueError as exc:
        # UnicodeDecodeError is a ValueError too
        raise CredentialDecodeError(ErrorReason.MALFORMED_ENCODING, str(exc))

    try:
        payload = json.loads(json_str)
    except (ValueError, RecursionError):
        raise CredentialDecodeError(
            ErrorReason.MALFORMED_PAYLOAD, "payload is not valid JSON"
        )
    if not isinstance(payload, dict):
        raise CredentialDecodeError(
            ErrorReason.MALFORMED_PAYLOAD, "payload must be a JSON object"
        )

    try:
        return PaymentCredential.model_validate(payload)
    except ValidationError as exc:
        errors = exc.errors()
        missing = [
            ".".join(str(part) for part in err["loc"])
            for err in errors
            if err["type"] == "missing"
        ]
        if missing:
            raise CredentialDecodeError(
                ErrorReason.MISSING_FIELD,
                f"missing field(s): {', '.join(missing)}",
            )
        raise CredentialDecodeError(
            ErrorReason.MALFORMED_PAYLOAD,
            "; ".join(err["msg"] for err in errors),
        )


def encode_settlement_header(result: SettlementResult) -> str:
    """Encode a settlement result to its ``X-PAYMENT-RESPONSE`` header value."""
    return safe_base64url_encode(result.model_dump_json(by_alias=True))


def decode_settlement_header(header: str) -> SettlementResult:
    """Decode an ``X-PAYMENT-RESPONSE`` header value.

    Args:
        header: Base64url encoded settlement result

    Returns:
        Decoded SettlementResult object
    """
    json_str = safe_base64url_decode(header)
    return SettlementResult.model_validate_json(json_str)
