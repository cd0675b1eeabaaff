import logging
from typing import Callable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from shulam_x402.encoding import (
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
    encode_settlement_header,
)
from shulam_x402.facilitator import (
    Facilitator,
    FacilitatorClient,
    FacilitatorConfig,
)
from shulam_x402.manifest import MANIFEST_PATH, ManifestPublisher
from shulam_x402.orchestrator import (
    PaymentInfraError,
    PaymentOrchestrator,
    PaymentSettled,
    PaymentState,
)
from shulam_x402.types import SettlementResult
from shulam_x402.webhooks import SIGNATURE_HEADER, verify_webhook_signature

logger = logging.getLogger(__name__)

# Attribute of ``request.state`` holding the SettlementResult
SETTLEMENT_STATE_KEY = "x402"


def require_payment(
    publisher: ManifestPublisher,
    facilitator: Optional[Facilitator] = None,
    facilitator_config: Optional[FacilitatorConfig] = None,
    serve_manifest: bool = True,
    retry_after_seconds: int = 1,
):
    """Generate a FastAPI middleware that gates the routes registered on ``publisher``.

    Args:
        publisher (ManifestPublisher): Protected routes and the published manifest.
        facilitator (Optional[Facilitator]): Facilitator to verify and settle with.
            Defaults to a FacilitatorClient built from ``facilitator_config``.
        facilitator_config (Optional[FacilitatorConfig]): Used when ``facilitator`` is None.
        serve_manifest (bool, optional): Answer ``GET /.well-known/x402-manifest.json``.
            Defaults to True.
        retry_after_seconds (int, optional): ``Retry-After`` sent with 503 responses.

    Returns:
        Callable: FastAPI middleware function that settles payment before the handler runs
    """
    if facilitator is None:
        facilitator = FacilitatorClient(facilitator_config)
    orchestrator = PaymentOrchestrator(facilitator)

    async def middleware(request: Request, call_next: Callable):
        if (
            serve_manifest
            and request.method == "GET"
            and request.url.path == MANIFEST_PATH
        ):
            return JSONResponse(content=publisher.manifest.as_dict())

        registration = publisher.match(request.method, request.url.path)
        if registration is None:
            return await call_next(request)

        try:
            requirement = await registration.resolve(request)
        except Exception as e:
            logger.exception(
                f"Price resolution failed for {registration.method} {registration.path}"
            )
            return JSONResponse(
                content={"error": f"Could not resolve payment requirement: {e}"},
                status_code=500,
            )

        outcome = await orchestrator.process(
            request.headers.get(PAYMENT_HEADER), requirement
        )

        if isinstance(outcome, PaymentSettled):
            setattr(request.state, SETTLEMENT_STATE_KEY, outcome.settlement)
            response = await call_next(request)
            response.headers[PAYMENT_RESPONSE_HEADER] = encode_settlement_header(
                outcome.settlement
            )
            return response

        if outcome.state is PaymentState.DECODE_FAILED:
            logger.warning(
                f"Invalid payment header from {request.client.host if request.client else 'unknown'}: "
                f"{outcome.reason.value}"
            )

        headers = {}
        if isinstance(outcome, PaymentInfraError):
            headers["Retry-After"] = str(retry_after_seconds)

        return Response(
            content=outcome.body,
            status_code=outcome.status_code,
            media_type="application/json",
            headers=headers,
        )

    return middleware


def get_settlement(request: Request) -> Optional[SettlementResult]:
    """Settlement attached by the middleware, or None for unprotected routes."""
    return getattr(request.state, SETTLEMENT_STATE_KEY, None)


async def verify_webhook(request: Request, secret: str) -> bool:
    """Check the ``X-Shulam-Signature`` of an incoming webhook request."""
    payload = await request.body()
    return verify_webhook_signature(payload, request.headers.get(SIGNATURE_HEADER), secret)
