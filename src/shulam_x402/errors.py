"""Reason taxonomy and exception types for the payment gate."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorReason(str, Enum):
    """Closed set of reason codes carried in the ``error`` field of a 402 body."""

    # decode-time, client's fault
    MALFORMED_ENCODING = "MalformedEncoding"
    MALFORMED_PAYLOAD = "MalformedPayload"
    MISSING_FIELD = "MissingField"

    # payment-invalid
    CREDENTIAL_EXPIRED = "CredentialExpired"
    REQUIREMENT_MISMATCH = "RequirementMismatch"
    SIGNATURE_INVALID = "SignatureInvalid"
    VERIFICATION_REJECTED = "VerificationRejected"

    # infrastructure
    FACILITATOR_UNREACHABLE = "FacilitatorUnreachable"
    FACILITATOR_TIMEOUT = "FacilitatorTimeout"

    # terminal settlement failure
    SETTLEMENT_REJECTED = "SettlementRejected"

    @property
    def is_infrastructure(self) -> bool:
        return self in (
            ErrorReason.FACILITATOR_UNREACHABLE,
            ErrorReason.FACILITATOR_TIMEOUT,
        )

    @classmethod
    def from_verify_reason(cls, value: Optional[str]) -> "ErrorReason":
        """Map a facilitator supplied reason onto the payment-invalid subset.

        Anything the facilitator reports that is not one of the payment-invalid
        codes collapses to ``VerificationRejected``.
        """
        allowed = {
            cls.CREDENTIAL_EXPIRED,
            cls.REQUIREMENT_MISMATCH,
            cls.SIGNATURE_INVALID,
            cls.VERIFICATION_REJECTED,
        }
        for reason in allowed:
            if reason.value == value:
                return reason
        return cls.VERIFICATION_REJECTED


class X402Error(Exception):
    """Base error for the payment gate."""

    reason: Optional[ErrorReason] = None

    def __init__(self, message: str = "", reason: Optional[ErrorReason] = None):
        super().__init__(message or (reason.value if reason else ""))
        if reason is not None:
            self.reason = reason


class CredentialDecodeError(X402Error):
    """Raised when an ``X-PAYMENT`` header cannot be turned into a credential."""

    def __init__(self, reason: ErrorReason, message: str = ""):
        super().__init__(message, reason)


class FacilitatorError(X402Error):
    """Infrastructure failure talking to the facilitator."""

    reason = ErrorReason.FACILITATOR_UNREACHABLE


class FacilitatorUnreachable(FacilitatorError):
    """All attempts failed with network errors or server errors."""

    reason = ErrorReason.FACILITATOR_UNREACHABLE


class FacilitatorTimeout(FacilitatorError):
    """All attempts failed and the last one exceeded its deadline."""

    reason = ErrorReason.FACILITATOR_TIMEOUT


class SettlementRejected(X402Error):
    """The facilitator explicitly refused to settle. Never retried."""

    reason = ErrorReason.SETTLEMENT_REJECTED


class ManifestConfigurationError(X402Error):
    """Route registrations cannot produce a valid manifest."""


class ConfigError(X402Error):
    """Raised when the supplied configuration is invalid."""
