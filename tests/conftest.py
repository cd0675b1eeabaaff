"""Shared fixtures: a canonical requirement, a credential factory and a facilitator double."""

from typing import Any, Optional

import pytest
import respx

from shulam_x402.facilitator import derive_idempotency_key
from shulam_x402.types import (
    PaymentCredential,
    PaymentRequirement,
    SettlementResult,
    VerificationOutcome,
)

NOW = 1_700_000_000
PAY_TO = "0xABC"
PAYER = "0x1234567890123456789012345678901234567890"


def build_credential(now: int = NOW, **overrides: Any) -> PaymentCredential:
    """Credential matching the ``requirement`` fixture, valid around ``now``.

    Overrides use wire (camelCase) field names.
    """
    data = {
        "scheme": "exact",
        "from": PAYER,
        "to": PAY_TO,
        "value": "0.10",
        "validAfter": now - 60,
        "validBefore": now + 300,
        "nonce": "0x" + "1" * 64,
        "signature": "0x" + "ab" * 65,
        "network": "base-sepolia",
    }
    data.update(overrides)
    return PaymentCredential.model_validate(data)


class FakeFacilitator:
    """In-memory facilitator recording every call it receives."""

    def __init__(
        self,
        outcome: Optional[VerificationOutcome] = None,
        settlement: Optional[SettlementResult] = None,
        verify_error: Optional[Exception] = None,
        settle_error: Optional[Exception] = None,
    ) -> None:
        self.outcome = outcome or VerificationOutcome.accepted()
        self.settlement = settlement or SettlementResult(
            transaction_hash="0xfeed",
            fee_amount="0.01",
            net_amount="0.09",
            network="base-sepolia",
        )
        self.verify_error = verify_error
        self.settle_error = settle_error
        self.verify_calls: list[PaymentCredential] = []
        self.settle_calls: list[tuple[PaymentCredential, str]] = []

    async def verify(self, credential, requirement):
        self.verify_calls.append(credential)
        if self.verify_error is not None:
            raise self.verify_error
        return self.outcome

    async def settle(self, credential, requirement, idempotency_key):
        self.settle_calls.append((credential, idempotency_key))
        if self.settle_error is not None:
            raise self.settle_error
        return self.settlement

    def idempotency_key_for(self, credential):
        return derive_idempotency_key(credential)


@pytest.fixture
def requirement() -> PaymentRequirement:
    return PaymentRequirement(
        amount="0.10",
        pay_to=PAY_TO,
        asset="USDC",
        network="base-sepolia",
        description="Premium data",
    )


@pytest.fixture
def make_credential():
    return build_credential


@pytest.fixture
def credential() -> PaymentCredential:
    return build_credential()


@pytest.fixture
def fake_facilitator() -> FakeFacilitator:
    return FakeFacilitator()


@pytest.fixture
def facilitator_factory():
    return FakeFacilitator


@pytest.fixture
def respx_mock():
    """Create respx mock for httpx requests."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock
