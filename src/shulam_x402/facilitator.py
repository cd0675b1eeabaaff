"""HTTP facilitator client with timeout, retry and idempotency discipline."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx
from pydantic import ValidationError

from shulam_x402.errors import (
    FacilitatorError,
    FacilitatorTimeout,
    FacilitatorUnreachable,
    SettlementRejected,
)
from shulam_x402.types import (
    PaymentCredential,
    PaymentRequirement,
    SettlementResult,
    VerificationOutcome,
)

logger = logging.getLogger(__name__)

DEFAULT_FACILITATOR_URL = "https://facilitator.shulam.xyz"
IDEMPOTENCY_HEADER = "Idempotency-Key"

# Statuses worth another attempt; everything else below 500 is final
_RETRYABLE_STATUSES = frozenset({408, 429})


def derive_idempotency_key(credential: PaymentCredential) -> str:
    """Derive the settlement idempotency key from the credential's nonce.

    The same credential always maps to the same key, so retried or repeated
    settle calls can never settle twice on the facilitator side.
    """
    digest = hashlib.sha256(f"settle:{credential.nonce}".encode("utf-8")).hexdigest()
    return f"x402-{digest}"


@dataclass(frozen=True)
class FacilitatorPolicy:
    """Retry schedule and idempotency-key derivation for facilitator calls.

    ``max_retries`` counts attempts after the first one. The delay before
    retry ``n`` (1-based) is ``backoff_base * backoff_factor ** (n - 1)``,
    capped at ``max_backoff``.
    """

    max_retries: int = 2
    backoff_base: float = 0.2
    backoff_factor: float = 2.0
    max_backoff: float = 2.0
    derive_key: Callable[[PaymentCredential], str] = derive_idempotency_key
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.backoff_base < 0 or self.max_backoff < 0:
            raise ValueError("backoff delays must not be negative")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff(self, retry: int) -> float:
        return min(self.backoff_base * self.backoff_factor ** (retry - 1), self.max_backoff)


# ============================================================================
# Auth Provider Protocol
# ============================================================================


@dataclass
class AuthHeaders:
    """Authentication headers for facilitator endpoints."""

    verify: dict[str, str] = field(default_factory=dict)
    settle: dict[str, str] = field(default_factory=dict)


class AuthProvider(Protocol):
    """Generates authentication headers for facilitator requests."""

    def get_auth_headers(self) -> AuthHeaders:
        ...


class CreateHeadersAuthProvider:
    """AuthProvider that wraps a ``create_headers`` callable returning a dict."""

    def __init__(self, create_headers: Callable[[], dict[str, dict[str, str]]]) -> None:
        self._create_headers = create_headers

    def get_auth_headers(self) -> AuthHeaders:
        result = self._create_headers()
        return AuthHeaders(
            verify=result.get("verify", {}),
            settle=result.get("settle", {}),
        )


# ============================================================================
# Facilitator Protocol
# ============================================================================


class Facilitator(Protocol):
    """What the orchestrator needs from a facilitator (HTTP client or test double)."""

    async def verify(
        self,
        credential: PaymentCredential,
        requirement: PaymentRequirement,
    ) -> VerificationOutcome:
        ...

    async def settle(
        self,
        credential: PaymentCredential,
        requirement: PaymentRequirement,
        idempotency_key: str,
    ) -> SettlementResult:
        ...

    def idempotency_key_for(self, credential: PaymentCredential) -> str:
        ...


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class FacilitatorConfig:
    """Configuration for the HTTP facilitator client."""

    url: str = DEFAULT_FACILITATOR_URL
    timeout: float = 5.0
    policy: FacilitatorPolicy = field(default_factory=FacilitatorPolicy)
    http_client: Optional[httpx.AsyncClient] = None
    auth_provider: Optional[AuthProvider] = None


# ============================================================================
# HTTP Facilitator Client
# ============================================================================


class FacilitatorClient:
    """Async client for a remote facilitator's ``/verify`` and ``/settle``.

    The client holds configuration only; it never caches outcomes.

    Example:
        ```python
        async with FacilitatorClient(FacilitatorConfig(url="https://...")) as client:
            outcome = await client.verify(credential, requirement)
            if outcome.verified:
                key = client.idempotency_key_for(credential)
                result = await client.settle(credential, requirement, key)
        ```
    """

    def __init__(self, config: Optional[FacilitatorConfig] = None) -> None:
        config = config or FacilitatorConfig()
        if config.timeout <= 0:
            raise ValueError("timeout must be greater than zero")

        self._url = config.url.rstrip("/")
        self._timeout = config.timeout
        self._policy = config.policy
        self._auth_provider = config.auth_provider
        self._http_client = config.http_client
        self._owns_client = config.http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> FacilitatorClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    @property
    def url(self) -> str:
        return self._url

    @property
    def policy(self) -> FacilitatorPolicy:
        return self._policy

    def idempotency_key_for(self, credential: PaymentCredential) -> str:
        return self._policy.derive_key(credential)

    # =========================================================================
    # Facilitator operations
    # =========================================================================

    async def verify(
        self,
        credential: PaymentCredential,
        requirement: PaymentRequirement,
    ) -> VerificationOutcome:
        """Ask the facilitator whether ``credential`` satisfies ``requirement``.

        Returns:
            VerificationOutcome, ``verified=False`` only for payment problems.

        Raises:
            FacilitatorTimeout: If every attempt failed and the last timed out.
            FacilitatorUnreachable: If every attempt failed otherwise, or the
                facilitator answered with something that is not a verdict.
        """
        body = {
            "credential": _dump(credential),
            "requirement": _dump(requirement),
        }
        response = await self._post_with_retry("verify", body, self._auth_headers("verify"))

        data = _json_body(response)
        if data is None or not isinstance(data.get("verified"), bool):
            raise FacilitatorUnreachable(
                f"Facilitator verify returned an unexpected response ({response.status_code})"
            )
        if data["verified"]:
            return VerificationOutcome.accepted()
        return VerificationOutcome.rejected(data.get("reason"))

    async def settle(
        self,
        credential: PaymentCredential,
        requirement: PaymentRequirement,
        idempotency_key: str,
    ) -> SettlementResult:
        """Settle a verified credential. Every attempt carries the same key.

        Raises:
            SettlementRejected: The facilitator refused; not retried.
            FacilitatorTimeout: If every attempt failed and the last timed out.
            FacilitatorUnreachable: If every attempt failed otherwise.
        """
        if not idempotency_key:
            raise ValueError("settle requires an idempotency key")

        body = {
            "credential": _dump(credential),
            "requirement": _dump(requirement),
            "idempotencyKey": idempotency_key,
        }
        headers = self._auth_headers("settle")
        headers[IDEMPOTENCY_HEADER] = idempotency_key
        response = await self._post_with_retry("settle", body, headers)

        data = _json_body(response)
        if response.status_code >= 400 or (data is not None and data.get("error")):
            detail = _rejection_detail(data, response)
            logger.warning("Facilitator rejected settlement: %s", detail)
            raise SettlementRejected(detail)
        if data is None:
            raise FacilitatorUnreachable("Facilitator settle returned a non-JSON body")

        data.setdefault("network", requirement.network)
        try:
            result = SettlementResult.model_validate(data)
        except ValidationError as exc:
            raise FacilitatorUnreachable(
                f"Facilitator settle returned an invalid result: {exc}"
            ) from exc

        logger.info(
            "Settled payment on %s, transaction %s", result.network, result.transaction_hash
        )
        return result

    # =========================================================================
    # Internal HTTP methods
    # =========================================================================

    def _auth_headers(self, operation: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._auth_provider:
            auth = self._auth_provider.get_auth_headers()
            headers.update(getattr(auth, operation))
        return headers

    async def _post_with_retry(
        self,
        operation: str,
        body: dict[str, Any],
        headers: dict[str, str],
    ) -> httpx.Response:
        """POST ``body`` with the bounded retry schedule of the policy.

        Returns the first response that is not retryable. Network errors,
        timeouts, 408, 429 and 5xx responses are retried.
        """
        client = self._get_client()
        url = f"{self._url}/{operation}"
        attempts = self._policy.max_attempts
        last_error: Optional[Exception] = None
        timed_out = False

        for attempt in range(attempts):
            if attempt > 0:
                delay = self._policy.backoff(attempt)
                logger.warning(
                    "Facilitator %s failed (attempt %d/%d): %s; retrying in %.2fs",
                    operation,
                    attempt,
                    attempts,
                    last_error,
                    delay,
                )
                await self._policy.sleep(delay)

            try:
                response = await asyncio.wait_for(
                    client.post(url, json=body, headers=headers, timeout=self._timeout),
                    timeout=self._timeout,
                )
            except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
                last_error = exc
                timed_out = True
                continue
            except httpx.RequestError as exc:
                # includes undecodable bodies and redirect loops
                last_error = exc
                timed_out = False
                continue

            if response.status_code >= 500 or response.status_code in _RETRYABLE_STATUSES:
                last_error = FacilitatorError(
                    f"Facilitator {operation} responded with {response.status_code}"
                )
                timed_out = False
                continue

            return response

        logger.error(
            "Facilitator %s unavailable after %d attempts: %s", operation, attempts, last_error
        )
        if timed_out:
            raise FacilitatorTimeout(
                f"Facilitator {operation} timed out after {attempts} attempts"
            ) from last_error
        raise FacilitatorUnreachable(
            f"Facilitator {operation} unreachable after {attempts} attempts"
        ) from last_error


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json", exclude_none=True)


def _json_body(response: httpx.Response) -> Optional[dict[str, Any]]:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _rejection_detail(data: Optional[dict[str, Any]], response: httpx.Response) -> str:
    if data:
        for key in ("error", "reason", "message"):
            if data.get(key):
                return str(data[key])
    return f"status {response.status_code}"
