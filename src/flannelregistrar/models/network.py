"""Typed views of kernel networking state returned by the RouteTable adapter."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field


@dataclass(frozen=True)
class RouteEntry:
    """A single IPv4 route as seen in the main routing table."""

    destination: str  # "10.5.40.0/24" or "default"
    via: str = ""
    device: str = ""
    onlink: bool = False
    scope_link: bool = False
    protocol: str = ""

    def is_direct_via(self, gateway: str) -> bool:
        """True if this route goes via ``gateway`` without the onlink flag."""
        return self.via == gateway and not self.onlink


@dataclass(frozen=True)
class LinkInfo:
    """A network interface and its IPv4 addresses."""

    name: str
    index: int
    kind: str = ""  # "bridge", "vxlan", "wireguard", ... empty if unknown
    admin_up: bool = False
    operstate: str = "UNKNOWN"
    mtu: int = 0
    addresses: tuple[str, ...] = field(default_factory=tuple)  # "172.18.0.1/16"

    @property
    def first_address(self) -> str | None:
        """First assigned IPv4 address without its prefix length."""
        if not self.addresses:
            return None
        return self.addresses[0].split("/")[0]

    def slash24_network(self) -> str | None:
        """
        The /24 network of the first assigned address.

        The overlay registers per-host /24 segments, so a bridge is matched
        against a subnet through the /24 its own address falls in, regardless
        of the prefix length actually configured on the bridge.
        """
        address = self.first_address
        if address is None:
            return None
        try:
            network = ipaddress.ip_network(f"{address}/24", strict=False)
        except ValueError:
            return None
        return str(network)


@dataclass(frozen=True)
class FdbEntry:
    """A VXLAN forwarding database entry: remote VTEP MAC -> underlay IP."""

    mac: str
    dst: str
    device: str = ""
