"""Parsing of operator supplied gateway maps and extra static routes."""

from __future__ import annotations

from flannelregistrar.models.routes import ExtraRoute, GatewayMapping
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.validation import (
    ip_in_network,
    is_valid_ip,
    is_valid_network,
    validate_subnet,
)

logger = get_logger(__name__)


def _entries(text: str) -> list[str]:
    return [entry.strip() for entry in (text or "").split(",") if entry.strip()]


def parse_host_gateway_map(text: str) -> list[GatewayMapping]:
    """
    Parse ``host:gateway`` pairs separated by commas.

    The host may be an IP or a CIDR network; the gateway must be an IP.
    Malformed pairs are logged and skipped.
    """
    mappings = []
    for entry in _entries(text):
        host, sep, gateway = entry.partition(":")
        host, gateway = host.strip(), gateway.strip()
        if not sep or not host or not gateway:
            logger.warning(f"Skipping malformed gateway mapping: {entry!r}")
            continue
        if not (is_valid_ip(host) or is_valid_network(host)):
            logger.warning(f"Skipping gateway mapping with invalid host: {entry!r}")
            continue
        if not is_valid_ip(gateway):
            logger.warning(f"Skipping gateway mapping with invalid gateway: {entry!r}")
            continue
        mappings.append(GatewayMapping(host=host, gateway=gateway))
    logger.debug(f"Parsed {len(mappings)} host gateway mappings")
    return mappings


def lookup_gateway(mappings: list[GatewayMapping], ip: str) -> str | None:
    """Exact host match first, then the first network containing ``ip``."""
    for mapping in mappings:
        if mapping.host == ip:
            return mapping.gateway
    for mapping in mappings:
        if "/" in mapping.host and ip_in_network(ip, mapping.host):
            return mapping.gateway
    return None


def parse_extra_routes(text: str) -> list[ExtraRoute]:
    """Parse ``subnet:gateway[:interface]`` entries separated by commas."""
    routes = []
    for entry in _entries(text):
        parts = [p.strip() for p in entry.split(":")]
        if len(parts) < 2 or len(parts) > 3:
            logger.warning(f"Skipping malformed extra route: {entry!r}")
            continue
        subnet, gateway = parts[0], parts[1]
        interface = parts[2] if len(parts) == 3 else ""
        if not validate_subnet(subnet):
            logger.warning(f"Skipping extra route with invalid subnet: {entry!r}")
            continue
        if not is_valid_ip(gateway):
            logger.warning(f"Skipping extra route with invalid gateway: {entry!r}")
            continue
        routes.append(ExtraRoute(subnet=subnet, gateway=gateway, interface=interface))
    return routes
