"""
Kernel networking access behind a narrow, typed interface.

``RouteTable`` is what the topology prober, reconciler and remediation actions
consume. ``IPRouteTable`` implements it with pyroute2 netlink calls, so no
command output is ever parsed by the core logic.
"""

from __future__ import annotations

import socket
import subprocess
from abc import ABC, abstractmethod

from pyroute2.netlink.exceptions import NetlinkError

from flannelregistrar.exceptions import RouteCommandError
from flannelregistrar.models.network import FdbEntry, LinkInfo, RouteEntry
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.validation import normalize_destination

logger = get_logger(__name__)

# rtnetlink constants
RT_TABLE_MAIN = 254
RT_SCOPE_UNIVERSE = 0
RT_SCOPE_LINK = 253
RTPROT_STATIC = 4
RTNH_F_ONLINK = 4
IFF_UP = 1

_PROTOCOL_NAMES = {2: "kernel", 3: "boot", 4: "static", 16: "dhcp"}


# =============================================================================
# RouteTable Interface
# =============================================================================


class RouteTable(ABC):
    """
    Routing table, link and VXLAN forwarding database operations.

    Mutating calls raise ``RouteCommandError``; read calls never raise for
    missing data and return empty results instead.
    """

    @abstractmethod
    def list_routes(self) -> list[RouteEntry]: ...

    @abstractmethod
    def list_links(self) -> list[LinkInfo]: ...

    @abstractmethod
    def add_route(
        self,
        destination: str,
        via: str = "",
        device: str = "",
        scope_link: bool = False,
    ) -> None: ...

    @abstractmethod
    def replace_route(
        self,
        destination: str,
        via: str = "",
        device: str = "",
        scope_link: bool = False,
    ) -> None: ...

    @abstractmethod
    def delete_route(self, destination: str, via: str = "", device: str = "") -> None: ...

    @abstractmethod
    def outbound_device(self, ip: str) -> str | None:
        """Device the kernel would use to reach ``ip`` (``ip route get``)."""

    @abstractmethod
    def set_link_state(self, name: str, up: bool) -> None: ...

    @abstractmethod
    def set_link_mtu(self, name: str, mtu: int) -> None: ...

    @abstractmethod
    def list_fdb(self, device: str) -> list[FdbEntry]: ...

    @abstractmethod
    def add_fdb(self, device: str, mac: str, dst: str) -> None: ...

    @abstractmethod
    def delete_fdb(self, device: str, mac: str, dst: str = "") -> None: ...

    @abstractmethod
    def is_reachable(self, ip: str) -> bool: ...

    def routes_to(self, destination: str) -> list[RouteEntry]:
        """All live routes for exactly this destination."""
        wanted = normalize_destination(destination)
        return [r for r in self.list_routes() if r.destination == wanted]

    def get_link(self, name: str) -> LinkInfo | None:
        for link in self.list_links():
            if link.name == name:
                return link
        return None

    def link_exists(self, name: str) -> bool:
        return self.get_link(name) is not None


# =============================================================================
# pyroute2 Implementation
# =============================================================================


def _split_destination(destination: str) -> tuple[str, int]:
    network = normalize_destination(destination)
    address, _, prefix = network.partition("/")
    return address, int(prefix or 32)


class IPRouteTable(RouteTable):
    """RouteTable backed by a lazily created pyroute2 ``IPRoute`` socket."""

    def __init__(self):
        self._ipr = None

    def _get_ipr(self):
        """Get or create IPRoute instance."""
        if self._ipr is None:
            from pyroute2 import IPRoute

            self._ipr = IPRoute()
        return self._ipr

    def close(self) -> None:
        if self._ipr is not None:
            self._ipr.close()
            self._ipr = None

    def _index_names(self) -> dict[int, str]:
        return {
            link["index"]: link.get_attr("IFLA_IFNAME")
            for link in self._get_ipr().get_links()
        }

    def _index_of(self, name: str) -> int:
        for index, ifname in self._index_names().items():
            if ifname == name:
                return index
        raise RouteCommandError("lookup", name, "no such device")

    # =========================================================================
    # Reads
    # =========================================================================

    def list_routes(self) -> list[RouteEntry]:
        ipr = self._get_ipr()
        routes = []
        try:
            names = self._index_names()
            messages = ipr.get_routes(family=socket.AF_INET, table=RT_TABLE_MAIN)
        except NetlinkError as e:
            logger.warning(f"Failed to dump routes: {e}")
            return []

        for msg in messages:
            dst = msg.get_attr("RTA_DST")
            dst_len = msg["dst_len"]
            destination = "default" if dst is None and dst_len == 0 else f"{dst}/{dst_len}"
            oif = msg.get_attr("RTA_OIF")
            routes.append(
                RouteEntry(
                    destination=normalize_destination(destination),
                    via=msg.get_attr("RTA_GATEWAY") or "",
                    device=names.get(oif, "") if oif is not None else "",
                    onlink=bool(msg["flags"] & RTNH_F_ONLINK),
                    scope_link=msg["scope"] == RT_SCOPE_LINK,
                    protocol=_PROTOCOL_NAMES.get(msg["proto"], str(msg["proto"])),
                )
            )
        return routes

    def list_links(self) -> list[LinkInfo]:
        ipr = self._get_ipr()
        try:
            raw_links = list(ipr.get_links())
            raw_addrs = list(ipr.get_addr(family=socket.AF_INET))
        except NetlinkError as e:
            logger.warning(f"Failed to dump links: {e}")
            return []

        addresses: dict[int, list[str]] = {}
        for addr in raw_addrs:
            address = addr.get_attr("IFA_ADDRESS")
            if address:
                addresses.setdefault(addr["index"], []).append(
                    f"{address}/{addr['prefixlen']}"
                )

        links = []
        for link in raw_links:
            kind = ""
            linkinfo = link.get_attr("IFLA_LINKINFO")
            if linkinfo:
                kind = linkinfo.get_attr("IFLA_INFO_KIND") or ""
            links.append(
                LinkInfo(
                    name=link.get_attr("IFLA_IFNAME"),
                    index=link["index"],
                    kind=kind,
                    admin_up=bool(link["flags"] & IFF_UP),
                    operstate=link.get_attr("IFLA_OPERSTATE") or "UNKNOWN",
                    mtu=link.get_attr("IFLA_MTU") or 0,
                    addresses=tuple(addresses.get(link["index"], [])),
                )
            )
        return links

    def outbound_device(self, ip: str) -> str | None:
        try:
            result = self._get_ipr().route("get", dst=ip)
        except NetlinkError as e:
            logger.debug(f"route get {ip} failed: {e}")
            return None
        names = self._index_names()
        for msg in result:
            oif = msg.get_attr("RTA_OIF")
            if oif is not None:
                return names.get(oif)
        return None

    def list_fdb(self, device: str) -> list[FdbEntry]:
        try:
            index = self._index_of(device)
            messages = self._get_ipr().fdb("dump", ifindex=index)
        except (RouteCommandError, NetlinkError) as e:
            logger.debug(f"FDB dump on {device} failed: {e}")
            return []
        entries = []
        for msg in messages:
            if msg["ifindex"] != index:
                continue
            mac = msg.get_attr("NDA_LLADDR")
            dst = msg.get_attr("NDA_DST")
            if mac and dst:
                entries.append(FdbEntry(mac=mac.lower(), dst=dst, device=device))
        return entries

    def is_reachable(self, ip: str) -> bool:
        try:
            result = subprocess.run(
                ["ping", "-c", "1", "-W", "1", ip],
                capture_output=True,
                text=True,
                timeout=3,
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return False

    # =========================================================================
    # Mutations
    # =========================================================================

    def _route_call(
        self,
        command: str,
        destination: str,
        via: str = "",
        device: str = "",
        scope_link: bool = False,
    ) -> None:
        dst, dst_len = _split_destination(destination)
        kwargs: dict = {"dst": dst, "dst_len": dst_len, "table": RT_TABLE_MAIN}
        if command != "del":
            kwargs["proto"] = RTPROT_STATIC
            kwargs["scope"] = RT_SCOPE_LINK if scope_link else RT_SCOPE_UNIVERSE
        if via:
            kwargs["gateway"] = via
        if device:
            kwargs["oif"] = self._index_of(device)
        try:
            self._get_ipr().route(command, **kwargs)
        except NetlinkError as e:
            raise RouteCommandError(f"route {command}", destination, str(e)) from e

    def add_route(self, destination, via="", device="", scope_link=False) -> None:
        self._route_call("add", destination, via, device, scope_link)

    def replace_route(self, destination, via="", device="", scope_link=False) -> None:
        self._route_call("replace", destination, via, device, scope_link)

    def delete_route(self, destination, via="", device="") -> None:
        self._route_call("del", destination, via, device)

    def set_link_state(self, name: str, up: bool) -> None:
        try:
            self._get_ipr().link("set", index=self._index_of(name), state="up" if up else "down")
        except NetlinkError as e:
            raise RouteCommandError("link set", name, str(e)) from e

    def set_link_mtu(self, name: str, mtu: int) -> None:
        try:
            self._get_ipr().link("set", index=self._index_of(name), mtu=mtu)
        except NetlinkError as e:
            raise RouteCommandError("link mtu", name, str(e)) from e

    def add_fdb(self, device: str, mac: str, dst: str) -> None:
        try:
            self._get_ipr().fdb("append", ifindex=self._index_of(device), lladdr=mac, dst=dst)
        except NetlinkError as e:
            raise RouteCommandError("fdb append", f"{mac} dev {device}", str(e)) from e

    def delete_fdb(self, device: str, mac: str, dst: str = "") -> None:
        kwargs = {"ifindex": self._index_of(device), "lladdr": mac}
        if dst:
            kwargs["dst"] = dst
        try:
            self._get_ipr().fdb("del", **kwargs)
        except NetlinkError as e:
            raise RouteCommandError("fdb del", f"{mac} dev {device}", str(e)) from e
