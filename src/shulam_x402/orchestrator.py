"""Per-request payment state machine.

A request moves through ``NoCredential`` or ``Decoding`` → ``Verifying`` →
``Settling`` and ends in exactly one terminal state. The orchestrator keeps
no state between requests; all it holds is the facilitator it talks to and a
clock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Optional, TypeVar, Union

from shulam_x402.encoding import build_requirement_response, decode_credential_header
from shulam_x402.errors import (
    CredentialDecodeError,
    ErrorReason,
    FacilitatorError,
    SettlementRejected,
)
from shulam_x402.facilitator import Facilitator
from shulam_x402.types import (
    PaymentCredential,
    PaymentRequirement,
    SettlementResult,
    addresses_equal,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PaymentState(str, Enum):
    NO_CREDENTIAL = "NoCredential"
    DECODING = "Decoding"
    DECODE_FAILED = "DecodeFailed"
    VERIFYING = "Verifying"
    VERIFY_FAILED = "VerifyFailed"
    VERIFY_INFRA_ERROR = "VerifyInfraError"
    SETTLING = "Settling"
    SETTLE_FAILED = "SettleFailed"
    SETTLE_INFRA_ERROR = "SettleInfraError"
    SETTLED = "Settled"


@dataclass(frozen=True)
class PaymentRequired:
    """Answer with 402: no credential, or a credential that was refused."""

    requirement: PaymentRequirement
    state: PaymentState
    reason: Optional[ErrorReason] = None

    status_code: ClassVar[int] = 402

    @property
    def body(self) -> bytes:
        return build_requirement_response(self.requirement, self.reason)


@dataclass(frozen=True)
class PaymentInfraError:
    """The facilitator could not be reached; the client should retry later."""

    requirement: PaymentRequirement
    state: PaymentState
    reason: ErrorReason

    status_code: ClassVar[int] = 503

    @property
    def body(self) -> bytes:
        return build_requirement_response(self.requirement, self.reason)


@dataclass(frozen=True)
class PaymentSettled:
    """Payment settled; forward to the handler with ``settlement`` attached."""

    requirement: PaymentRequirement
    credential: PaymentCredential
    settlement: SettlementResult

    state: ClassVar[PaymentState] = PaymentState.SETTLED
    status_code: ClassVar[int] = 200
    reason: ClassVar[Optional[ErrorReason]] = None


PaymentOutcome = Union[PaymentRequired, PaymentInfraError, PaymentSettled]


def check_credential(
    credential: PaymentCredential,
    requirement: PaymentRequirement,
    now: int,
) -> Optional[ErrorReason]:
    """Local checks of a decoded credential against the current requirement.

    Returns:
        ``CredentialExpired`` or ``RequirementMismatch``, or None when the
        credential may be sent to the facilitator.
    """
    if not credential.is_within_window(now):
        return ErrorReason.CREDENTIAL_EXPIRED

    if credential.scheme != requirement.scheme:
        return ErrorReason.REQUIREMENT_MISMATCH
    if not addresses_equal(credential.to, requirement.pay_to):
        return ErrorReason.REQUIREMENT_MISMATCH
    if credential.value_decimal != requirement.amount_decimal:
        return ErrorReason.REQUIREMENT_MISMATCH
    if credential.network is not None and credential.network != requirement.network:
        return ErrorReason.REQUIREMENT_MISMATCH
    if (
        requirement.ttl_seconds is not None
        and credential.valid_before > now + requirement.ttl_seconds
    ):
        return ErrorReason.REQUIREMENT_MISMATCH
    return None


def _retrieve_exception(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled():
        task.exception()


async def _shielded(awaitable: Awaitable[T]) -> T:
    """Await a facilitator call that must run to completion.

    If the inbound request is cancelled the call keeps running and its
    result is dropped.
    """
    task = asyncio.ensure_future(awaitable)
    task.add_done_callback(_retrieve_exception)
    return await asyncio.shield(task)


class PaymentOrchestrator:
    """Classify a request and drive verify/settle against a facilitator.

    Example:
        ```python
        orchestrator = PaymentOrchestrator(FacilitatorClient(config))
        outcome = await orchestrator.process(request.headers.get("X-PAYMENT"), requirement)
        if isinstance(outcome, PaymentSettled):
            request.state.x402 = outcome.settlement
        ```
    """

    def __init__(
        self,
        facilitator: Facilitator,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._facilitator = facilitator
        self._clock = clock

    async def process(
        self,
        header_value: Optional[str],
        requirement: PaymentRequirement,
        now: Optional[int] = None,
    ) -> PaymentOutcome:
        """Run the state machine once for one request.

        Args:
            header_value: Raw ``X-PAYMENT`` header, or None when absent.
            requirement: Fully resolved requirement for this request.
            now: Unix time override; defaults to the orchestrator's clock.

        Returns:
            PaymentRequired, PaymentInfraError or PaymentSettled.
        """
        if header_value is None or not header_value.strip():
            return PaymentRequired(requirement, PaymentState.NO_CREDENTIAL)

        logger.debug("Payment state: %s", PaymentState.DECODING.value)
        try:
            credential = decode_credential_header(header_value)
        except CredentialDecodeError as exc:
            logger.info("Rejected payment header: %s (%s)", exc.reason.value, exc)
            return PaymentRequired(requirement, PaymentState.DECODE_FAILED, exc.reason)

        checked_at = self._now(now)
        reason = check_credential(credential, requirement, checked_at)
        if reason is not None:
            logger.info("Rejected credential from %s: %s", credential.payer_address, reason.value)
            return PaymentRequired(requirement, PaymentState.VERIFY_FAILED, reason)

        logger.debug("Payment state: %s", PaymentState.VERIFYING.value)
        try:
            verification = await _shielded(self._facilitator.verify(credential, requirement))
        except FacilitatorError as exc:
            logger.warning("Verification unavailable: %s", exc)
            return PaymentInfraError(requirement, PaymentState.VERIFY_INFRA_ERROR, exc.reason)

        if not verification.verified:
            logger.info(
                "Facilitator refused credential from %s: %s",
                credential.payer_address,
                verification.reason.value,
            )
            return PaymentRequired(requirement, PaymentState.VERIFY_FAILED, verification.reason)

        # verification may have taken a while; the window must still hold
        if not credential.is_within_window(self._now(now)):
            return PaymentRequired(
                requirement, PaymentState.VERIFY_FAILED, ErrorReason.CREDENTIAL_EXPIRED
            )

        idempotency_key = self._facilitator.idempotency_key_for(credential)
        logger.debug("Payment state: %s", PaymentState.SETTLING.value)
        try:
            settlement = await _shielded(
                self._facilitator.settle(credential, requirement, idempotency_key)
            )
        except SettlementRejected as exc:
            logger.warning("Settlement rejected for %s: %s", credential.payer_address, exc)
            return PaymentRequired(
                requirement, PaymentState.SETTLE_FAILED, ErrorReason.SETTLEMENT_REJECTED
            )
        except FacilitatorError as exc:
            logger.error("Settlement unavailable (key %s): %s", idempotency_key, exc)
            return PaymentInfraError(requirement, PaymentState.SETTLE_INFRA_ERROR, exc.reason)

        return PaymentSettled(requirement, credential, settlement)

    def _now(self, override: Optional[int]) -> int:
        return int(self._clock()) if override is None else override
