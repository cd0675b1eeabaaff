"""shulam_x402: payment verification and settlement for x402-gated HTTP APIs."""

# Codec
from shulam_x402.encoding import (
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
    build_requirement_response,
    decode_credential_header,
    decode_settlement_header,
    encode_credential_header,
    encode_settlement_header,
)

# Errors
from shulam_x402.errors import (
    ConfigError,
    CredentialDecodeError,
    ErrorReason,
    FacilitatorError,
    FacilitatorTimeout,
    FacilitatorUnreachable,
    ManifestConfigurationError,
    SettlementRejected,
    X402Error,
)

# Facilitator
from shulam_x402.facilitator import (
    FacilitatorClient,
    FacilitatorConfig,
    FacilitatorPolicy,
    derive_idempotency_key,
)

# Orchestrator
from shulam_x402.orchestrator import (
    PaymentInfraError,
    PaymentOrchestrator,
    PaymentOutcome,
    PaymentRequired,
    PaymentSettled,
    PaymentState,
)

# Manifest
from shulam_x402.manifest import (
    MANIFEST_PATH,
    ManifestPublisher,
    ValidationIssue,
    ValidationReport,
    generate_manifest,
    validate_manifest,
)
from shulam_x402.routes import RouteRegistration, path_is_match

# Types
from shulam_x402.types import (
    ManifestEndpoint,
    PaymentCredential,
    PaymentRequirement,
    RateLimit,
    SettlementResult,
    VerificationOutcome,
    X402Manifest,
)

# Webhooks
from shulam_x402.webhooks import (
    SIGNATURE_HEADER,
    WebhookEnvelope,
    compute_webhook_signature,
    verify_webhook_signature,
)

# Config
from shulam_x402.config import X402Settings, load_settings


__all__ = [
    # Codec
    "PAYMENT_HEADER",
    "PAYMENT_RESPONSE_HEADER",
    "build_requirement_response",
    "decode_credential_header",
    "decode_settlement_header",
    "encode_credential_header",
    "encode_settlement_header",
    # Errors
    "ConfigError",
    "CredentialDecodeError",
    "ErrorReason",
    "FacilitatorError",
    "FacilitatorTimeout",
    "FacilitatorUnreachable",
    "ManifestConfigurationError",
    "SettlementRejected",
    "X402Error",
    # Facilitator
    "FacilitatorClient",
    "FacilitatorConfig",
    "FacilitatorPolicy",
    "derive_idempotency_key",
    # Orchestrator
    "PaymentInfraError",
    "PaymentOrchestrator",
    "PaymentOutcome",
    "PaymentRequired",
    "PaymentSettled",
    "PaymentState",
    # Manifest
    "MANIFEST_PATH",
    "ManifestPublisher",
    "ValidationIssue",
    "ValidationReport",
    "generate_manifest",
    "validate_manifest",
    "RouteRegistration",
    "path_is_match",
    # Types
    "ManifestEndpoint",
    "PaymentCredential",
    "PaymentRequirement",
    "RateLimit",
    "SettlementResult",
    "VerificationOutcome",
    "X402Manifest",
    # Webhooks
    "SIGNATURE_HEADER",
    "WebhookEnvelope",
    "compute_webhook_signature",
    "verify_webhook_signature",
    # Config
    "X402Settings",
    "load_settings",
]
