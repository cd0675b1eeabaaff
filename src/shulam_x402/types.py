from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from shulam_x402.errors import ErrorReason

# The only authorization scheme the gate accepts
EXACT_SCHEME = "exact"

MANIFEST_VERSION = "1.0"

DECIMAL_AMOUNT_PATTERN = re.compile(r"^\d+(\.\d+)?$")

# 0x-prefixed hex (EVM style) or base58 (Solana style)
ADDRESS_PATTERN = re.compile(
    r"^(0x[0-9a-fA-F]{1,64}|[1-9A-HJ-NP-Za-km-z]{32,44})$"
)


def _check_decimal_amount(v: str, field_name: str) -> str:
    if not isinstance(v, str) or not DECIMAL_AMOUNT_PATTERN.match(v):
        raise ValueError(
            f"{field_name} must be a non-negative decimal encoded as a string"
        )
    return v


def _check_address(v: str) -> str:
    if not ADDRESS_PATTERN.match(v):
        raise ValueError(f"{v!r} is not a valid chain address")
    return v


def addresses_equal(a: str, b: str) -> bool:
    """Compare two addresses; hex addresses are case-insensitive."""
    if a.startswith("0x") and b.startswith("0x"):
        return a.lower() == b.lower()
    return a == b


class RateLimit(BaseModel):
    """Advertised request allowance. Descriptive only, never enforced."""

    requests: int = Field(gt=0)
    window_seconds: int = Field(gt=0)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class PaymentRequirement(BaseModel):
    """What a protected endpoint demands for a single request."""

    amount: str
    pay_to: str
    asset: str
    network: str = Field(min_length=1)
    description: str = ""
    scheme: str = EXACT_SCHEME
    rate_limit: Optional[RateLimit] = None
    ttl_seconds: Optional[int] = Field(default=None, gt=0)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    @field_validator("amount")
    def validate_amount(cls, v):
        return _check_decimal_amount(v, "amount")

    @field_validator("pay_to")
    def validate_pay_to(cls, v):
        return _check_address(v)

    @property
    def amount_decimal(self) -> Decimal:
        return Decimal(self.amount)


class PaymentCredential(BaseModel):
    """Signed authorization decoded from the ``X-PAYMENT`` header."""

    scheme: str
    payer_address: str = Field(alias="from", min_length=1)
    to: str = Field(min_length=1)
    value: str
    valid_after: int
    valid_before: int
    nonce: str = Field(min_length=1)
    signature: bytes
    network: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    @field_validator("value", mode="before")
    def validate_value(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        return _check_decimal_amount(v, "value")

    @field_validator("signature", mode="before")
    def validate_signature(cls, v):
        if isinstance(v, str):
            hex_part = v[2:] if v.startswith("0x") else v
            try:
                v = bytes.fromhex(hex_part)
            except ValueError:
                raise ValueError("signature must be hex encoded")
        if not isinstance(v, (bytes, bytearray)) or len(v) == 0:
            raise ValueError("signature must not be empty")
        return bytes(v)

    @field_serializer("signature")
    def serialize_signature(self, v: bytes) -> str:
        return "0x" + v.hex()

    @model_validator(mode="after")
    def validate_window(self):
        if self.valid_after >= self.valid_before:
            raise ValueError("validAfter must be strictly before validBefore")
        return self

    def is_within_window(self, now: int) -> bool:
        return self.valid_after <= now < self.valid_before

    @property
    def value_decimal(self) -> Decimal:
        return Decimal(self.value)


class VerificationOutcome(BaseModel):
    verified: bool
    reason: Optional[ErrorReason] = None

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    @model_validator(mode="after")
    def validate_reason(self):
        if self.verified and self.reason is not None:
            raise ValueError("a verified outcome carries no reason")
        if not self.verified and self.reason is None:
            raise ValueError("a rejected outcome must carry a reason")
        return self

    @classmethod
    def accepted(cls) -> "VerificationOutcome":
        return cls(verified=True)

    @classmethod
    def rejected(cls, reason: Optional[str]) -> "VerificationOutcome":
        return cls(verified=False, reason=ErrorReason.from_verify_reason(reason))


class SettlementResult(BaseModel):
    """Outcome of a successful settlement, attached to the request context."""

    transaction_hash: str = Field(min_length=1)
    fee_amount: str = Field(alias="fee")
    net_amount: str
    network: str
    settled_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    @field_validator("fee_amount")
    def validate_fee(cls, v):
        return _check_decimal_amount(v, "fee")

    @field_validator("net_amount")
    def validate_net(cls, v):
        return _check_decimal_amount(v, "netAmount")


# Returned by the server as the body of a 402 response
class PaymentRequiredResponse(BaseModel):
    max_amount_required: str
    pay_to: str
    asset: str
    network: str
    description: str
    error: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @classmethod
    def from_requirement(
        cls, requirement: PaymentRequirement, error: Optional[str] = None
    ) -> "PaymentRequiredResponse":
        return cls(
            max_amount_required=requirement.amount,
            pay_to=requirement.pay_to,
            asset=requirement.asset,
            network=requirement.network,
            description=requirement.description,
            error=error,
        )


class ManifestEndpoint(BaseModel):
    path: str = Field(min_length=1)
    method: str = Field(min_length=1)
    amount: Optional[str] = None
    pay_to: str
    asset: str
    network: str
    description: str = ""
    ttl_seconds: Optional[int] = None
    rate_limit: Optional[RateLimit] = None
    dynamic_pricing: bool = False

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    @field_validator("method")
    def normalize_method(cls, v):
        return v.upper()

    @model_validator(mode="after")
    def validate_amount(self):
        if self.amount is None and not self.dynamic_pricing:
            raise ValueError("a fixed-price endpoint must declare an amount")
        if self.amount is not None:
            _check_decimal_amount(self.amount, "amount")
        return self


class X402Manifest(BaseModel):
    """Machine-readable description of every payable endpoint."""

    version: str = MANIFEST_VERSION
    provider: str
    endpoints: List[ManifestEndpoint] = Field(default_factory=list)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    @model_validator(mode="after")
    def validate_unique_routes(self):
        seen = set()
        for endpoint in self.endpoints:
            key = (endpoint.path, endpoint.method)
            if key in seen:
                raise ValueError(
                    f"duplicate endpoint {endpoint.method} {endpoint.path}"
                )
            seen.add(key)
        return self

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    def as_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
