"""Subnet, key and operator input validation."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from flannelregistrar.models.routes import ExtraRoute, GatewayMapping
from flannelregistrar.network.parsing import (
    lookup_gateway,
    parse_extra_routes,
    parse_host_gateway_map,
)
from flannelregistrar.utils.validation import (
    is_date_like,
    is_valid_ip,
    normalize_destination,
    slash24_of,
    subnet_from_key,
    validate_subnet,
)

octet = st.integers(min_value=0, max_value=255)
mask = st.integers(min_value=1, max_value=32)


@given(a=octet, b=octet, c=octet, d=octet, m=mask)
def test_valid_cidrs_accepted(a, b, c, d, m):
    assert validate_subnet(f"{a}.{b}.{c}.{d}/{m}")


@given(a=st.integers(min_value=256, max_value=999), m=mask)
def test_octet_over_255_rejected(a, m):
    assert not validate_subnet(f"10.{a}.0.0/{m}")


@given(a=octet, b=octet, c=octet, m=mask)
def test_subnet_key_converts_to_cidr(a, b, c, m):
    key = f"/coreos.com/network/subnets/{a}.{b}.{c}.0-{m}"
    assert subnet_from_key(key) == f"{a}.{b}.{c}.0/{m}"


@pytest.mark.parametrize(
    "value",
    ["", "10.5.0.0", "10.5.0.0/0", "10.5.0.0/33", "2024-01-01/24", "abc/24", "10.5.0/24"],
)
def test_invalid_subnets(value):
    assert not validate_subnet(value)


@pytest.mark.parametrize(
    "key",
    [
        "/coreos.com/network/subnets/2024-01-01",
        "/coreos.com/network/subnets/2024/01/01",
        "/coreos.com/network/subnets/10.5.40.0",
        "/coreos.com/network/subnets/10.5.40.0-40",
        "/coreos.com/network/config",
    ],
)
def test_non_subnet_keys(key):
    assert subnet_from_key(key) is None


def test_date_like():
    assert is_date_like("2024-03-01")
    assert is_date_like("2024/03/01T10:00")
    assert not is_date_like("10.5.40.0-24")


def test_ip_helpers():
    assert is_valid_ip("192.168.1.10")
    assert not is_valid_ip("192.168.1.256")
    assert slash24_of("192.168.1.10") == "192.168.1.0/24"
    assert slash24_of("nope") is None
    assert normalize_destination("10.5.40.7/24") == "10.5.40.0/24"
    assert normalize_destination("10.5.40.7") == "10.5.40.7/32"
    assert normalize_destination("default") == "default"


class TestGatewayMap:
    def test_parses_hosts_and_networks(self):
        mappings = parse_host_gateway_map("192.168.2.20:10.0.0.254, 10.8.0.0/16:10.0.0.1")
        assert mappings == [
            GatewayMapping("192.168.2.20", "10.0.0.254"),
            GatewayMapping("10.8.0.0/16", "10.0.0.1"),
        ]

    def test_malformed_pairs_skipped(self):
        mappings = parse_host_gateway_map("bogus,host:1.2.3.4,1.2.3.4:gw,5.6.7.8:9.9.9.9")
        assert mappings == [GatewayMapping("5.6.7.8", "9.9.9.9")]

    def test_exact_match_before_network(self):
        mappings = [GatewayMapping("10.8.0.0/16", "10.0.0.1"), GatewayMapping("10.8.1.5", "10.0.0.2")]
        assert lookup_gateway(mappings, "10.8.1.5") == "10.0.0.2"
        assert lookup_gateway(mappings, "10.8.3.3") == "10.0.0.1"
        assert lookup_gateway(mappings, "10.9.0.1") is None

    @given(st.text())
    def test_arbitrary_text_never_raises(self, text):
        for mapping in parse_host_gateway_map(text):
            assert is_valid_ip(mapping.gateway)


class TestExtraRoutes:
    def test_parses_optional_interface(self):
        routes = parse_extra_routes("192.168.50.0/24:192.168.60.1:eth1,172.30.0.0/16:10.0.0.1")
        assert routes == [
            ExtraRoute("192.168.50.0/24", "192.168.60.1", "eth1"),
            ExtraRoute("172.30.0.0/16", "10.0.0.1", ""),
        ]

    def test_invalid_entries_skipped(self):
        assert parse_extra_routes("2024-01-01/24:1.2.3.4,10.0.0.0/8:x,a:b:c:d") == []

    @given(st.text())
    def test_arbitrary_text_never_raises(self, text):
        for route in parse_extra_routes(text):
            assert validate_subnet(route.subnet)
