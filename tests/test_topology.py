"""Topology classification and forwarding-database sync."""

from pyroute2.netlink.exceptions import NetlinkError
from conftest import FakeRouteTable, bridge, overlay_link

from flannelregistrar.models.network import FdbEntry, LinkInfo, RouteEntry
from flannelregistrar.models.routes import GatewayMapping, SubnetRecord
from flannelregistrar.network.fdb import FdbSynchronizer
from flannelregistrar.network.route_table import IPRouteTable
from flannelregistrar.network.topology import TopologyProber, is_bridge


class TestBridgeDetection:
    def test_bridge_matched_by_slash24_of_first_address(self):
        table = FakeRouteTable(links=[bridge(address="10.5.40.1/16")])
        prober = TopologyProber(table)
        prober.begin_pass()

        assert prober.is_locally_bridged("10.5.40.0/24") == "br-0123456789ab"
        assert prober.is_locally_bridged("10.5.41.0/24") is None

    def test_down_bridge_ignored(self):
        table = FakeRouteTable(links=[bridge(up=False)])
        prober = TopologyProber(table)
        prober.begin_pass()

        assert prober.is_locally_bridged("10.5.40.0/24") is None

    def test_kind_takes_precedence_over_name(self):
        assert is_bridge(LinkInfo(name="docker0", index=1, kind=""))
        assert is_bridge(LinkInfo(name="caddy_net", index=1, kind=""))
        assert is_bridge(LinkInfo(name="lan0", index=1, kind="bridge"))
        assert not is_bridge(LinkInfo(name="docker0", index=1, kind="veth"))
        assert not is_bridge(LinkInfo(name="eth0", index=1, kind=""))

    def test_bridges_snapshot_per_pass(self):
        table = FakeRouteTable(links=[bridge()])
        prober = TopologyProber(table)
        prober.begin_pass()
        assert prober.is_locally_bridged("10.5.40.0/24")

        table.links = []
        assert prober.is_locally_bridged("10.5.40.0/24")
        prober.begin_pass()
        assert prober.is_locally_bridged("10.5.40.0/24") is None


class TestOverlayManaged:
    def test_onlink_route_through_overlay(self):
        table = FakeRouteTable(
            routes=[RouteEntry("10.244.3.0/24", via="10.244.3.0", device="flannel.1", onlink=True)]
        )
        prober = TopologyProber(table, overlay_prefix="10.5")
        assert prober.is_overlay_managed_route("10.244.3.0/24")
        assert not prober.is_overlay_managed_route("10.244.4.0/24")

    def test_prefix_match_respects_dot_boundary(self):
        prober = TopologyProber(FakeRouteTable(), overlay_prefix="10.5")
        assert prober.is_overlay_managed_route("10.5.40.0/24")
        assert not prober.is_overlay_managed_route("10.50.1.0/24")

    def test_empty_prefix_disables_prefix_match(self):
        prober = TopologyProber(FakeRouteTable(), overlay_prefix="")
        assert not prober.is_overlay_managed_route("10.5.40.0/24")


class TestGateways:
    def test_configured_mapping_wins(self):
        table = FakeRouteTable(
            links=[LinkInfo(name="wg0", index=5, kind="wireguard")],
            routes=[RouteEntry("172.24.0.0/16", via="172.24.0.1", device="wg0")],
        )
        prober = TopologyProber(table, gateway_map=[GatewayMapping("172.24.0.9", "10.0.0.254")])
        prober.begin_pass(["172.24.0.9", "172.24.0.10"])

        assert prober.resolve_gateway("172.24.0.9") == "10.0.0.254"
        assert prober.resolve_gateway("172.24.0.10") == "172.24.0.1"
        assert prober.resolve_gateway("192.168.1.10") == "192.168.1.10"

    def test_reachable_tunnel_hosts_not_mapped(self):
        table = FakeRouteTable(
            links=[LinkInfo(name="wg0", index=5, kind="wireguard")],
            routes=[RouteEntry("172.24.0.0/16", via="172.24.0.1", device="wg0")],
        )
        table.reachable.add("172.24.0.10")
        prober = TopologyProber(table)

        assert prober.detect_gateways(["172.24.0.10", "172.24.0.11", "192.168.1.5"]) == {
            "172.24.0.11": "172.24.0.1"
        }

    def test_no_tunnel_interface_no_detection(self):
        table = FakeRouteTable(routes=[RouteEntry("172.24.0.0/16", via="172.24.0.1", device="eth0")])
        assert TopologyProber(table).detect_gateways(["172.24.0.11"]) == {}


def lease(subnet, public_ip, mac=""):
    return SubnetRecord(subnet=subnet, public_ip=public_ip, vtep_mac=mac)


class TestFdbSync:
    def test_adds_missing_and_skips_local(self):
        table = FakeRouteTable(links=[overlay_link()])
        sync = FdbSynchronizer(table, local_public_ip="192.168.1.10")

        result = sync.sync(
            [
                lease("10.5.40.0/24", "192.168.1.10", "aa:aa:aa:aa:aa:01"),
                lease("10.5.41.0/24", "192.168.1.11", "AA:AA:AA:AA:AA:02"),
                lease("10.5.42.0/24", "127.0.0.1", "aa:aa:aa:aa:aa:03"),
                lease("10.5.43.0/24", "192.168.1.13"),
            ]
        )

        assert (result.added, result.updated, result.failed) == (1, 0, 0)
        assert table.fdb["flannel.1"] == [FdbEntry("aa:aa:aa:aa:aa:02", "192.168.1.11", "flannel.1")]
        assert result.ok

    def test_stale_endpoint_replaced_with_gateway(self):
        table = FakeRouteTable(links=[overlay_link()])
        table.fdb["flannel.1"] = [FdbEntry("aa:aa:aa:aa:aa:02", "192.168.1.11", "flannel.1")]
        sync = FdbSynchronizer(table, gateway_map=[GatewayMapping("192.168.1.11", "10.0.0.254")])

        result = sync.sync([lease("10.5.41.0/24", "192.168.1.11", "aa:aa:aa:aa:aa:02")])

        assert result.updated == 1
        assert ("fdb-del", "flannel.1", "aa:aa:aa:aa:aa:02", "192.168.1.11") in table.mutations
        assert [e.dst for e in table.fdb["flannel.1"]] == ["10.0.0.254"]

    def test_failed_append_keeps_old_endpoint(self):
        table = FakeRouteTable(links=[overlay_link()])
        table.fdb["flannel.1"] = [FdbEntry("aa:aa:aa:aa:aa:02", "192.168.1.11", "flannel.1")]
        table.fail_fdb_add.add("aa:aa:aa:aa:aa:02")
        sync = FdbSynchronizer(table, gateway_map=[GatewayMapping("192.168.1.11", "10.0.0.254")])

        result = sync.sync([lease("10.5.41.0/24", "192.168.1.11", "aa:aa:aa:aa:aa:02")])

        assert result.failed == 1
        assert [e.dst for e in table.fdb["flannel.1"]] == ["192.168.1.11"]
        assert not any(m[0] == "fdb-del" for m in table.mutations)

    def test_unchanged_entries_untouched(self):
        table = FakeRouteTable(links=[overlay_link()])
        table.fdb["flannel.1"] = [FdbEntry("aa:aa:aa:aa:aa:02", "192.168.1.11", "flannel.1")]

        result = FdbSynchronizer(table).sync([lease("10.5.41.0/24", "192.168.1.11", "aa:aa:aa:aa:aa:02")])

        assert result.unchanged == 1
        assert table.mutations == []

    def test_missing_device(self):
        result = FdbSynchronizer(FakeRouteTable()).sync([lease("10.5.41.0/24", "192.168.1.11", "aa:aa:aa:aa:aa:02")])
        assert not result.device_present
        assert not result.ok


class BusyNetlink:
    """IPRoute stand-in whose link dump fails."""

    def get_links(self):
        raise NetlinkError(16, "Device or resource busy")

    def get_routes(self, **kwargs):
        return []


def test_route_dump_survives_failed_link_dump():
    table = IPRouteTable()
    table._ipr = BusyNetlink()

    assert table.list_routes() == []
    assert table.routes_to("10.5.40.0/24") == []
