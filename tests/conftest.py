"""Shared fakes and fixtures.

Nothing here touches the real kernel, Docker or etcd: the registrar's
adapters are replaced by in-memory implementations of their interfaces.
"""

import dataclasses
import time

import pytest

from flannelregistrar.exceptions import RegistryUnavailableError, RouteCommandError
from flannelregistrar.models.network import FdbEntry, LinkInfo, RouteEntry
from flannelregistrar.models.recovery import ContainerStatus
from flannelregistrar.network.route_table import RouteTable
from flannelregistrar.network.topology import TopologyProber
from flannelregistrar.registry.etcd import KeyValueStore, check_key
from flannelregistrar.registry.subnets import SubnetRegistry
from flannelregistrar.routes.backup import RouteBackupStore
from flannelregistrar.routes.reconciler import RouteReconciler
from flannelregistrar.runtime.container import ContainerRuntime
from flannelregistrar.utils.retry import Clock
from flannelregistrar.utils.validation import normalize_destination

SUBNETS_PREFIX = "/coreos.com/network/subnets/"


def lease_key(subnet: str) -> str:
    return SUBNETS_PREFIX + subnet.replace("/", "-")


class ManualClock(Clock):
    """Clock that only moves when told to; ``sleep`` advances it."""

    def __init__(self, start: float | None = None):
        self.t = time.time() if start is None else start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.t

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += seconds

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeRouteTable(RouteTable):
    """In-memory routing table recording every mutation."""

    def __init__(self, routes=None, links=None):
        self.routes: list[RouteEntry] = list(routes or [])
        self.links: list[LinkInfo] = list(links or [])
        self.fdb: dict[str, list[FdbEntry]] = {}
        self.mutations: list[tuple] = []
        self.outbound: dict[str, str] = {}
        self.reachable: set[str] = set()
        self.fail_without_device: set[str] = set()
        self.fail_fdb_add: set[str] = set()
        self.mtu_after_up: int | None = None

    # Reads

    def list_routes(self):
        return list(self.routes)

    def list_links(self):
        return list(self.links)

    def outbound_device(self, ip):
        return self.outbound.get(ip)

    def list_fdb(self, device):
        return list(self.fdb.get(device, []))

    def is_reachable(self, ip):
        return ip in self.reachable

    # Mutations

    def add_route(self, destination, via="", device="", scope_link=False):
        destination = normalize_destination(destination)
        self.mutations.append(("add", destination, via, device))
        if destination in self.fail_without_device and not device:
            raise RouteCommandError("route add", destination, "Network is unreachable")
        if any(r.destination == destination and r.via == via and r.device == device for r in self.routes):
            raise RouteCommandError("route add", destination, "File exists")
        self.routes.append(
            RouteEntry(destination, via=via, device=device, scope_link=scope_link, protocol="static")
        )

    def replace_route(self, destination, via="", device="", scope_link=False):
        destination = normalize_destination(destination)
        self.mutations.append(("replace", destination, via, device))
        if destination in self.fail_without_device and not device:
            raise RouteCommandError("route replace", destination, "Network is unreachable")
        new = RouteEntry(destination, via=via, device=device, scope_link=scope_link, protocol="static")
        # Like the kernel, only the first route to the destination is swapped
        for i, route in enumerate(self.routes):
            if route.destination == destination:
                self.routes[i] = new
                return
        self.routes.append(new)

    def delete_route(self, destination, via="", device=""):
        destination = normalize_destination(destination)
        self.mutations.append(("delete", destination, via, device))
        remaining = [
            r
            for r in self.routes
            if not (
                r.destination == destination
                and (not via or r.via == via)
                and (not device or r.device == device)
            )
        ]
        if len(remaining) == len(self.routes):
            raise RouteCommandError("route del", destination, "No such process")
        self.routes = remaining

    def _replace_link(self, name, **changes):
        for i, link in enumerate(self.links):
            if link.name == name:
                self.links[i] = dataclasses.replace(link, **changes)
                return
        raise RouteCommandError("link set", name, "Cannot find device")

    def set_link_state(self, name, up):
        self.mutations.append(("link", name, "up" if up else "down"))
        changes = {"admin_up": up, "operstate": "UNKNOWN" if up else "DOWN"}
        if up and self.mtu_after_up is not None:
            changes["mtu"] = self.mtu_after_up
        self._replace_link(name, **changes)

    def set_link_mtu(self, name, mtu):
        self.mutations.append(("mtu", name, mtu))
        self._replace_link(name, mtu=mtu)

    def add_fdb(self, device, mac, dst):
        self.mutations.append(("fdb-add", device, mac, dst))
        if mac in self.fail_fdb_add:
            raise RouteCommandError("fdb append", f"{mac} dev {device}", "Operation not supported")
        self.fdb.setdefault(device, []).append(FdbEntry(mac=mac, dst=dst, device=device))

    def delete_fdb(self, device, mac, dst=""):
        self.mutations.append(("fdb-del", device, mac, dst))
        self.fdb[device] = [
            e for e in self.fdb.get(device, []) if not (e.mac == mac and (not dst or e.dst == dst))
        ]

    # Helpers for assertions

    def mutations_for(self, destination: str) -> list[tuple]:
        destination = normalize_destination(destination)
        return [m for m in self.mutations if m[0] in ("add", "replace", "delete") and m[1] == destination]


class MemoryKV(KeyValueStore):
    """Dict-backed key-value store with the etcd client's key checks."""

    def __init__(self, data=None):
        self.data: dict[str, str] = dict(data or {})
        self.available = True
        self.healthy = True
        self.deleted: list[str] = []

    def _check(self):
        if not self.available:
            raise RegistryUnavailableError("memory://", "connection refused")

    def get(self, key):
        self._check()
        check_key(key)
        return self.data.get(key)

    def put(self, key, value):
        self._check()
        check_key(key)
        self.data[key] = value
        return True

    def delete(self, key):
        self._check()
        check_key(key)
        self.deleted.append(key)
        return self.data.pop(key, None) is not None

    def list_keys(self, prefix):
        self._check()
        return [k for k in self.data if k.startswith(prefix)]

    def is_healthy(self):
        return self.available and self.healthy


class FakeRuntime(ContainerRuntime):
    """Container runtime holding ContainerStatus objects by ID."""

    def __init__(self, containers=None, flannel_id=None):
        self.containers: dict[str, ContainerStatus] = dict(containers or {})
        self.flannel_id = flannel_id
        self.responding = True
        self.exec_ok = True
        self.restarts: list[str] = []
        self.on_restart = None
        self.running: list[str] | None = None

    def ping(self):
        return self.responding

    def list_running(self, filters=None):
        if self.running is not None:
            return list(self.running)
        return [cid for cid, c in self.containers.items() if c.running]

    def find_flannel_container(self):
        return self.flannel_id

    def inspect(self, container_id):
        return self.containers[container_id]

    def restart(self, container_id, timeout):
        self.restarts.append(container_id)
        if self.on_restart is not None:
            self.on_restart(self, container_id)

    def exec_basic_check(self, container_id):
        return self.exec_ok


class FakeHostDelegate:
    """Stands in for HostDelegate; records actions instead of running systemctl."""

    def __init__(self, result=True, hook=None):
        self.result = result
        self.hook = hook
        self.in_container = False
        self.calls: list[tuple[str, str]] = []

    def run(self, action, service="docker"):
        self.calls.append((action, service))
        if self.hook is not None:
            self.hook()
        return self.result


def bridge(name="br-0123456789ab", address="10.5.40.1/24", up=True, kind="bridge", index=10):
    return LinkInfo(name=name, index=index, kind=kind, admin_up=up, operstate="UP", mtu=1500, addresses=(address,))


def overlay_link(name="flannel.1", up=True, mtu=1370, operstate="UNKNOWN"):
    return LinkInfo(name=name, index=3, kind="vxlan", admin_up=up, operstate=operstate, mtu=mtu, addresses=("10.5.10.0/32",))


def healthy_container(container_id="f1a2b3c4d5e6"):
    return ContainerStatus(
        container_id=container_id,
        name="flannel",
        state="running",
        running=True,
        health="none",
        restart_count=0,
        uptime=3600,
        network_mode="host",
        net_admin=True,
    )


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def table():
    return FakeRouteTable()


@pytest.fixture
def kv():
    return MemoryKV()


@pytest.fixture
def make_reconciler(tmp_path, clock):
    """Factory building a reconciler around a fake table and store."""

    def factory(table, kv, overlay_prefix="10.244", gateway_map=None, **kwargs):
        prober = TopologyProber(
            table,
            overlay_interface="flannel.1",
            overlay_prefix=overlay_prefix,
            gateway_map=gateway_map,
        )
        return RouteReconciler(
            table,
            SubnetRegistry(kv, SUBNETS_PREFIX),
            prober,
            RouteBackupStore(str(tmp_path / "routes" / "routes_backup.json"), clock),
            gateway_map=gateway_map,
            clock=clock,
            **kwargs,
        )

    return factory
