"""Protected route registrations, path matching and price resolution."""

from __future__ import annotations

import fnmatch
import inspect
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Union

from shulam_x402.types import (
    EXACT_SCHEME,
    PaymentRequirement,
    RateLimit,
)

Money = Union[str, int, Decimal]  # e.g. "0.10", "$0.10", 1, Decimal("0.5")
PriceCallback = Callable[[Any], Union[Money, Awaitable[Money]]]
Price = Union[Money, PriceCallback]


def path_is_match(path: Union[str, list[str]], request_path: str) -> bool:
    """
    Check if request path matches the specified path pattern(s).

    Supports:
    - Exact matching: "/api/users"
    - Glob patterns: "/api/users/*", "/api/*/profile"
    - Regex patterns (prefix with 'regex:'): "regex:^/api/users/\\d+$"
    - List of any of the above
    """

    def single_path_match(pattern: str) -> bool:
        if pattern.startswith("regex:"):
            return re.match(pattern[len("regex:"):], request_path) is not None
        if any(ch in pattern for ch in "*?["):
            return fnmatch.fnmatchcase(request_path, pattern)
        return pattern == request_path

    if isinstance(path, str):
        return single_path_match(path)
    if isinstance(path, list):
        return any(single_path_match(p) for p in path)
    return False


def normalize_money(value: Money) -> str:
    """Turn a configured price into the decimal string carried on the wire."""
    if isinstance(value, bool):
        raise ValueError("price must be a number, not a boolean")
    if isinstance(value, (int, Decimal)):
        text = str(value)
    elif isinstance(value, str):
        text = value.strip()
        if text.startswith("$"):
            text = text[1:]
    else:
        raise ValueError(f"unsupported price type: {type(value).__name__}")
    return text


@dataclass(frozen=True)
class RouteRegistration:
    """A protected ``(method, path)`` and the requirement it demands.

    ``price`` is either a fixed amount or a callback of the request returning
    one (sync or async). A dynamic route may declare a
    ``representative_amount`` to advertise in the manifest.
    """

    path: str
    pay_to: str
    asset: str
    network: str
    price: Price
    method: str = "GET"
    description: str = ""
    rate_limit: Optional[RateLimit] = None
    ttl_seconds: Optional[int] = None
    representative_amount: Optional[Money] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        # Fail fast on bad configuration
        if not self.is_dynamic:
            self.static_requirement()
        elif self.representative_amount is not None:
            self._requirement(self.representative_amount)
        else:
            self._requirement("0")

    @property
    def key(self) -> tuple[str, str]:
        return (self.path, self.method)

    @property
    def is_dynamic(self) -> bool:
        return callable(self.price)

    def matches(self, method: str, request_path: str) -> bool:
        return method.upper() == self.method and path_is_match(self.path, request_path)

    def _requirement(self, amount: Money) -> PaymentRequirement:
        return PaymentRequirement(
            amount=normalize_money(amount),
            pay_to=self.pay_to,
            asset=self.asset,
            network=self.network,
            description=self.description,
            scheme=EXACT_SCHEME,
            rate_limit=self.rate_limit,
            ttl_seconds=self.ttl_seconds,
        )

    def static_requirement(self) -> PaymentRequirement:
        if self.is_dynamic:
            raise ValueError(f"{self.method} {self.path} has a dynamic price")
        return self._requirement(self.price)  # type: ignore[arg-type]

    async def resolve(self, request: Any) -> PaymentRequirement:
        """Resolve the requirement for one request, calling a dynamic price hook."""
        if not self.is_dynamic:
            return self.static_requirement()
        amount = self.price(request)  # type: ignore[operator]
        if inspect.isawaitable(amount):
            amount = await amount
        return self._requirement(amount)

    def manifest_amount(self) -> Optional[str]:
        """Amount advertised in the manifest; None for unresolved dynamic prices."""
        if not self.is_dynamic:
            return self.static_requirement().amount
        if self.representative_amount is None:
            return None
        return self._requirement(self.representative_amount).amount
