"""
Topology prober: classifies how a remote subnet should be reached.

Every probe degrades to "no classification" when the kernel cannot be
queried, leaving the subnet to the generic direct-routing branch.
"""

from __future__ import annotations

import re

from flannelregistrar.exceptions import RouteCommandError
from flannelregistrar.models.network import LinkInfo
from flannelregistrar.models.routes import GatewayMapping
from flannelregistrar.network.parsing import lookup_gateway
from flannelregistrar.network.route_table import RouteTable
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.validation import normalize_destination

logger = get_logger(__name__)

# Docker user networks, Docker's default bridge and reverse-proxy bridges
BRIDGE_NAME_RE = re.compile(r"^(br-[0-9a-f]{12}|docker.*|caddy.*)$")


def is_bridge(link: LinkInfo) -> bool:
    if link.kind:
        return link.kind == "bridge"
    return bool(BRIDGE_NAME_RE.match(link.name))


class TopologyProber:
    """
    Answers the three classification questions of a reconciliation pass.

    ``begin_pass`` must be called once per pass; it snapshots local bridges
    and builds the auto-detected gateway map for the owners seen in the pass.
    """

    def __init__(
        self,
        table: RouteTable,
        overlay_interface: str = "flannel.1",
        overlay_prefix: str = "10.5",
        gateway_map: list[GatewayMapping] | None = None,
        tunnel_prefixes: list[str] | None = None,
        tunnel_network_prefix: str = "172.24.",
    ):
        self.table = table
        self.overlay_interface = overlay_interface
        self.overlay_prefix = overlay_prefix.rstrip(".") + "." if overlay_prefix else ""
        self.gateway_map = list(gateway_map or [])
        self.tunnel_prefixes = tunnel_prefixes if tunnel_prefixes is not None else ["wg"]
        self.tunnel_network_prefix = tunnel_network_prefix
        self._bridges: list[LinkInfo] | None = None
        self.detected_gateways: dict[str, str] = {}

    # =========================================================================
    # Pass lifecycle
    # =========================================================================

    def begin_pass(self, owner_ips: list[str] | None = None) -> None:
        """Reset per-pass caches and auto-detect gateways for ``owner_ips``."""
        self._bridges = None
        self.detected_gateways = self.detect_gateways(owner_ips or [])

    def _list_bridges(self) -> list[LinkInfo]:
        if self._bridges is None:
            try:
                links = self.table.list_links()
            except (RouteCommandError, OSError) as e:
                logger.warning(f"Cannot list links for bridge detection: {e}")
                return []
            self._bridges = [link for link in links if is_bridge(link) and link.admin_up]
        return self._bridges

    # =========================================================================
    # Classification
    # =========================================================================

    def is_locally_bridged(self, subnet: str) -> str | None:
        """
        Name of the local bridge that owns ``subnet``, or None.

        A bridge owns the subnet when the /24 of its first address equals the
        subnet exactly. First match wins.
        """
        wanted = normalize_destination(subnet)
        for bridge in self._list_bridges():
            network = bridge.slash24_network()
            logger.trace(f"Checking bridge {bridge.name} ({network}) against {wanted}")
            if network == wanted:
                logger.debug(f"Subnet {wanted} is local to bridge {bridge.name}")
                return bridge.name
        return None

    def has_overlay_onlink_route(self, subnet: str) -> bool:
        try:
            routes = self.table.routes_to(subnet)
        except (RouteCommandError, OSError) as e:
            logger.debug(f"Cannot read routes for {subnet}: {e}")
            return False
        return any(r.onlink and r.device == self.overlay_interface for r in routes)

    def matches_overlay_prefix(self, subnet: str) -> bool:
        return bool(self.overlay_prefix) and subnet.startswith(self.overlay_prefix)

    def is_overlay_managed_route(self, subnet: str) -> bool:
        """
        True when the overlay daemon owns the route to ``subnet``.

        Either signal suffices: a live on-link route through the overlay
        interface, or a destination inside the overlay network prefix.
        """
        return self.has_overlay_onlink_route(subnet) or self.matches_overlay_prefix(subnet)

    def resolve_gateway(self, owner_ip: str) -> str:
        """
        Gateway to reach ``owner_ip``.

        Precedence: operator mapping, auto-detected mapping, then the owner IP
        itself (direct routing).
        """
        gateway = lookup_gateway(self.gateway_map, owner_ip)
        if gateway:
            logger.debug(f"Using configured gateway {gateway} for {owner_ip}")
            return gateway
        gateway = self.detected_gateways.get(owner_ip)
        if gateway:
            logger.debug(f"Using auto-detected gateway {gateway} for {owner_ip}")
            return gateway
        return owner_ip

    # =========================================================================
    # Gateway auto-detection
    # =========================================================================

    def _tunnel_interfaces(self) -> list[str]:
        try:
            links = self.table.list_links()
        except (RouteCommandError, OSError):
            return []
        return [
            link.name
            for link in links
            if any(link.name.startswith(prefix) for prefix in self.tunnel_prefixes)
        ]

    def detect_gateways(self, owner_ips: list[str]) -> dict[str, str]:
        """
        Infer gateways for owners only reachable over a tunnel transport.

        An owner inside the tunnel network that does not answer directly is
        mapped to the gateway of an existing route on the tunnel.
        """
        candidates = sorted(
            {ip for ip in owner_ips if self.tunnel_network_prefix and ip.startswith(self.tunnel_network_prefix)}
        )
        if not candidates:
            return {}
        tunnels = self._tunnel_interfaces()
        if not tunnels:
            return {}

        try:
            routes = self.table.list_routes()
        except (RouteCommandError, OSError) as e:
            logger.debug(f"Cannot read routes for gateway detection: {e}")
            return {}
        tunnel_gateway = ""
        for route in routes:
            if route.via and route.destination.startswith(self.tunnel_network_prefix):
                if route.device in tunnels:
                    tunnel_gateway = route.via
                    break
                tunnel_gateway = tunnel_gateway or route.via
        if not tunnel_gateway:
            return {}

        detected = {}
        for ip in candidates:
            if ip == tunnel_gateway or self.table.is_reachable(ip):
                continue
            logger.info(f"Auto-detected gateway {tunnel_gateway} for unreachable host {ip}")
            detected[ip] = tunnel_gateway
        return detected
