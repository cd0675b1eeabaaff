"""Capability manifest generation, validation and publication."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Sequence, Union

from jsonschema import Draft202012Validator

from shulam_x402.errors import ManifestConfigurationError
from shulam_x402.routes import RouteRegistration
from shulam_x402.types import (
    ADDRESS_PATTERN,
    DECIMAL_AMOUNT_PATTERN,
    MANIFEST_VERSION,
    ManifestEndpoint,
    X402Manifest,
)

logger = logging.getLogger(__name__)

MANIFEST_PATH = "/.well-known/x402-manifest.json"

HTTP_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

# JSON Schema for the published manifest.
# Compliant with JSON Schema Draft 2020-12.
manifest_schema: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "version": {"type": "string", "pattern": r"^\d+\.\d+(\.\d+)?$"},
        "provider": {"type": "string", "minLength": 1},
        "endpoints": {"type": "array", "items": {"$ref": "#/$defs/endpoint"}},
    },
    "required": ["version", "provider", "endpoints"],
    "$defs": {
        "rateLimit": {
            "type": "object",
            "properties": {
                "requests": {"type": "integer", "minimum": 1},
                "windowSeconds": {"type": "integer", "minimum": 1},
            },
            "required": ["requests", "windowSeconds"],
        },
        "endpoint": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "minLength": 1},
                "method": {"type": "string", "enum": HTTP_METHODS},
                "amount": {
                    "type": ["string", "null"],
                    "pattern": DECIMAL_AMOUNT_PATTERN.pattern,
                },
                "payTo": {"type": "string", "pattern": ADDRESS_PATTERN.pattern},
                "asset": {"type": "string", "minLength": 1},
                "network": {"type": "string", "minLength": 1},
                "description": {"type": "string"},
                "ttlSeconds": {"type": ["integer", "null"], "minimum": 1},
                "rateLimit": {
                    "anyOf": [{"$ref": "#/$defs/rateLimit"}, {"type": "null"}]
                },
                "dynamicPricing": {"type": "boolean"},
            },
            "required": ["path", "method", "amount", "payTo", "asset", "network"],
        },
    },
}

_validator = Draft202012Validator(manifest_schema)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    field_path: str
    reason: str
    severity: Severity = Severity.ERROR


@dataclass
class ValidationReport:
    """Every problem found in a manifest, errors and warnings alike."""

    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity is Severity.WARNING]

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, field_path: str, reason: str) -> None:
        self.issues.append(ValidationIssue(field_path, reason, Severity.ERROR))

    def warn(self, field_path: str, reason: str) -> None:
        self.issues.append(ValidationIssue(field_path, reason, Severity.WARNING))


def _format_path(parts: Iterable[Any]) -> str:
    path = "/".join(str(p) for p in parts)
    return path or "(root)"


def generate_manifest(
    registrations: Iterable[RouteRegistration],
    provider_name: str,
) -> X402Manifest:
    """Build the manifest for the given protected routes.

    Raises:
        ManifestConfigurationError: If two registrations share ``(path, method)``.
    """
    registrations = list(registrations)
    seen: set[tuple[str, str]] = set()
    duplicates: list[str] = []
    for registration in registrations:
        if registration.key in seen:
            duplicates.append(f"{registration.method} {registration.path}")
        seen.add(registration.key)
    if duplicates:
        raise ManifestConfigurationError(
            f"Route registered more than once: {', '.join(duplicates)}"
        )

    endpoints = [
        ManifestEndpoint(
            path=registration.path,
            method=registration.method,
            amount=registration.manifest_amount(),
            pay_to=registration.pay_to,
            asset=registration.asset,
            network=registration.network,
            description=registration.description,
            ttl_seconds=registration.ttl_seconds,
            rate_limit=registration.rate_limit,
            dynamic_pricing=registration.is_dynamic,
        )
        for registration in registrations
    ]
    return X402Manifest(
        version=MANIFEST_VERSION,
        provider=provider_name,
        endpoints=endpoints,
    )


def validate_manifest(manifest_bytes: Union[bytes, str]) -> ValidationReport:
    """Check a serialized manifest and report all violations.

    Schema violations and duplicate ``(path, method)`` pairs are errors; a
    missing ``rateLimit``, an empty endpoint list or a version other than the
    current one are warnings.
    """
    report = ValidationReport()
    try:
        document = json.loads(manifest_bytes)
    except (ValueError, TypeError, RecursionError) as exc:
        report.error("(root)", f"manifest is not valid JSON: {exc}")
        return report

    schema_errors = sorted(
        _validator.iter_errors(document),
        key=lambda e: _format_path(e.absolute_path),
    )
    for err in schema_errors:
        report.error(_format_path(err.absolute_path), err.message)

    if not isinstance(document, dict):
        return report

    version = document.get("version")
    if isinstance(version, str) and version != MANIFEST_VERSION:
        report.warn("version", f"unsupported manifest version {version!r}")

    endpoints = document.get("endpoints")
    if not isinstance(endpoints, list):
        return report
    if not endpoints:
        report.warn("endpoints", "manifest declares no endpoints")

    seen: dict[tuple[str, str], int] = {}
    for index, endpoint in enumerate(endpoints):
        if not isinstance(endpoint, dict):
            continue
        base = f"endpoints/{index}"

        path, method = endpoint.get("path"), endpoint.get("method")
        if isinstance(path, str) and isinstance(method, str):
            key = (path, method.upper())
            if key in seen:
                report.error(
                    base,
                    f"duplicate endpoint {key[1]} {key[0]} (first declared at endpoints/{seen[key]})",
                )
            else:
                seen[key] = index

        # a missing key is already reported by the schema
        if "amount" in endpoint and endpoint["amount"] is None:
            if not endpoint.get("dynamicPricing"):
                report.error(f"{base}/amount", "fixed-price endpoint must declare an amount")

        if endpoint.get("rateLimit") is None:
            report.warn(f"{base}/rateLimit", "no rateLimit declared")

    return report


class ManifestPublisher:
    """Holds route registrations and the manifest currently published for them.

    Rebuilds are serialized with a lock and the registrations/manifest pair is
    swapped as one reference, so readers never see a half-built manifest. A
    rebuild that fails leaves the previous manifest published.
    """

    def __init__(
        self,
        provider_name: str,
        registrations: Sequence[RouteRegistration] = (),
    ) -> None:
        self._provider_name = provider_name
        self._lock = threading.Lock()
        self._published: tuple[tuple[RouteRegistration, ...], X402Manifest] = (
            (),
            X402Manifest(provider=provider_name),
        )
        if registrations:
            self.replace(registrations)

    @property
    def provider_name(self) -> str:
        return self._provider_name

    @property
    def manifest(self) -> X402Manifest:
        return self._published[1]

    @property
    def registrations(self) -> tuple[RouteRegistration, ...]:
        return self._published[0]

    def register(self, registration: RouteRegistration) -> X402Manifest:
        """Add a protected route and republish."""
        with self._lock:
            registrations = self._published[0] + (registration,)
            return self._publish(registrations)

    def replace(self, registrations: Iterable[RouteRegistration]) -> X402Manifest:
        """Swap the whole registration set and republish."""
        with self._lock:
            return self._publish(tuple(registrations))

    def regenerate(self) -> X402Manifest:
        with self._lock:
            return self._publish(self._published[0])

    def match(self, method: str, request_path: str) -> Optional[RouteRegistration]:
        """First registration protecting ``method request_path``, if any."""
        for registration in self._published[0]:
            if registration.matches(method, request_path):
                return registration
        return None

    def _publish(self, registrations: tuple[RouteRegistration, ...]) -> X402Manifest:
        manifest = generate_manifest(registrations, self._provider_name)
        self._published = (registrations, manifest)
        logger.info(
            "Published x402 manifest with %d endpoint(s)", len(manifest.endpoints)
        )
        return manifest
