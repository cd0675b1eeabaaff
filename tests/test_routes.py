from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from shulam_x402.routes import RouteRegistration, normalize_money
from shulam_x402.types import RateLimit

PAY_TO = "0x1111111111111111111111111111111111111111"


def _route(**kwargs) -> RouteRegistration:
    defaults = dict(
        path="/api/data",
        pay_to=PAY_TO,
        asset="USDC",
        network="base-sepolia",
        price="$0.10",
    )
    defaults.update(kwargs)
    return RouteRegistration(**defaults)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("0.10", "0.10"),
        ("$0.10", "0.10"),
        (" $1 ", "1"),
        (1, "1"),
        (Decimal("0.5"), "0.5"),
    ],
)
def test_normalize_money(value, expected):
    assert normalize_money(value) == expected


@pytest.mark.parametrize("value", [True, 0.1, None])
def test_normalize_money_rejects_other_types(value):
    with pytest.raises(ValueError):
        normalize_money(value)


class TestStaticRoute:
    def test_static_requirement(self):
        route = _route(
            description="Premium data",
            rate_limit=RateLimit(requests=100, window_seconds=60),
            ttl_seconds=120,
        )
        req = route.static_requirement()

        assert req.amount == "0.10"
        assert req.pay_to == PAY_TO
        assert req.description == "Premium data"
        assert req.rate_limit.requests == 100
        assert req.ttl_seconds == 120
        assert route.manifest_amount() == "0.10"
        assert route.is_dynamic is False

    def test_method_is_uppercased(self):
        route = _route(method="post")

        assert route.method == "POST"
        assert route.key == ("/api/data", "POST")

    @pytest.mark.parametrize(
        "kwargs",
        [{"price": "ten"}, {"pay_to": "nope"}, {"network": ""}, {"ttl_seconds": 0}],
    )
    def test_bad_configuration_fails_at_registration(self, kwargs):
        with pytest.raises(ValueError):
            _route(**kwargs)

    def test_matches(self):
        route = _route(path="/items/*")

        assert route.matches("get", "/items/42") is True
        assert route.matches("POST", "/items/42") is False
        assert route.matches("GET", "/other") is False

    @pytest.mark.asyncio
    async def test_resolve(self):
        req = await _route().resolve(MagicMock())
        assert req.amount == "0.10"


class TestDynamicRoute:
    @pytest.mark.asyncio
    async def test_sync_callback(self):
        request = MagicMock()
        request.url.path = "/items/premium"

        def price(req):
            return "$10.00" if req.url.path.endswith("premium") else "$1.00"

        route = _route(path="/items/*", price=price)
        req = await route.resolve(request)

        assert route.is_dynamic is True
        assert req.amount == "10.00"

    @pytest.mark.asyncio
    async def test_async_callback(self):
        async def price(req):
            return Decimal("2.5")

        req = await _route(price=price).resolve(MagicMock())
        assert req.amount == "2.5"

    @pytest.mark.asyncio
    async def test_invalid_resolved_price(self):
        route = _route(price=lambda req: "free")

        with pytest.raises(ValueError):
            await route.resolve(MagicMock())

    def test_manifest_amount(self):
        assert _route(price=lambda req: "1").manifest_amount() is None
        assert (
            _route(price=lambda req: "1", representative_amount="$2").manifest_amount()
            == "2"
        )

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"pay_to": "nope"},
            {"network": ""},
            {"ttl_seconds": 0},
            {"representative_amount": "ten"},
            {"representative_amount": True},
        ],
    )
    def test_bad_configuration_fails_at_registration(self, kwargs):
        with pytest.raises(ValueError):
            _route(price=lambda req: "1", **kwargs)

    def test_no_static_requirement(self):
        with pytest.raises(ValueError):
            _route(price=lambda req: "1").static_requirement()
