"""
FastAPI middleware for x402 payment gating.

Install: pip install shulam-x402[fastapi]
Usage:   from shulam_x402.fastapi import require_payment

Example:
    from fastapi import FastAPI, Request
    from shulam_x402 import ManifestPublisher, RouteRegistration
    from shulam_x402.fastapi import get_settlement, require_payment

    publisher = ManifestPublisher("Weather API")
    publisher.register(
        RouteRegistration(
            path="/weather",
            price="0.10",
            pay_to="0x...",
            asset="USDC",
            network="base-sepolia",
        )
    )

    app = FastAPI()
    app.middleware("http")(require_payment(publisher))

    @app.get("/weather")
    async def weather(request: Request):
        return {"paid_tx": get_settlement(request).transaction_hash}
"""

from shulam_x402.fastapi.middleware import (
    SETTLEMENT_STATE_KEY,
    get_settlement,
    require_payment,
    verify_webhook,
)

__all__ = [
    "SETTLEMENT_STATE_KEY",
    "get_settlement",
    "require_payment",
    "verify_webhook",
]
