"""VXLAN forwarding database synchronisation from subnet leases."""

from __future__ import annotations

from dataclasses import dataclass

from flannelregistrar.exceptions import RouteCommandError
from flannelregistrar.models.routes import GatewayMapping, SubnetRecord
from flannelregistrar.network.parsing import lookup_gateway
from flannelregistrar.network.route_table import RouteTable
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.validation import LOCALHOST_IP

logger = get_logger(__name__)


@dataclass
class FdbSyncResult:
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    device_present: bool = True

    @property
    def ok(self) -> bool:
        return self.device_present and self.failed == 0


class FdbSynchronizer:
    """
    Ensures every remote VTEP MAC forwards to the right underlay endpoint.

    The endpoint is the mapped gateway when the owner is gateway-indirected,
    otherwise the owner's public IP.
    """

    def __init__(
        self,
        table: RouteTable,
        device: str = "flannel.1",
        gateway_map: list[GatewayMapping] | None = None,
        local_public_ip: str = "",
    ):
        self.table = table
        self.device = device
        self.gateway_map = list(gateway_map or [])
        self.local_public_ip = local_public_ip

    def desired_entries(self, records: list[SubnetRecord]) -> dict[str, str]:
        """Map of VTEP MAC -> endpoint IP for all remote leases."""
        desired: dict[str, str] = {}
        for record in records:
            if record.public_ip in (LOCALHOST_IP, self.local_public_ip):
                continue
            if not record.vtep_mac:
                logger.debug(f"Lease {record.subnet} has no VtepMAC, no FDB entry")
                continue
            endpoint = lookup_gateway(self.gateway_map, record.public_ip) or record.public_ip
            desired[record.vtep_mac.lower()] = endpoint
        return desired

    def sync(self, records: list[SubnetRecord]) -> FdbSyncResult:
        result = FdbSyncResult()
        if not self.table.link_exists(self.device):
            logger.warning(f"Overlay interface {self.device} missing, cannot sync FDB")
            result.device_present = False
            return result

        current: dict[str, list[str]] = {}
        for entry in self.table.list_fdb(self.device):
            current.setdefault(entry.mac.lower(), []).append(entry.dst)

        for mac, endpoint in self.desired_entries(records).items():
            existing = current.get(mac, [])
            if endpoint in existing and len(existing) == 1:
                result.unchanged += 1
                continue
            try:
                if endpoint not in existing:
                    self.table.add_fdb(self.device, mac, endpoint)
                # Stale destinations go only once the new one is appended
                for dst in existing:
                    if dst != endpoint:
                        self.table.delete_fdb(self.device, mac, dst)
            except RouteCommandError as e:
                logger.error(f"Failed to set FDB entry {mac} -> {endpoint}: {e}")
                result.failed += 1
                continue
            if existing:
                logger.info(f"Updated FDB entry {mac} -> {endpoint} (was {', '.join(existing)})")
                result.updated += 1
            else:
                logger.info(f"Added FDB entry {mac} -> {endpoint}")
                result.added += 1

        logger.info(
            f"FDB sync completed: {result.added} added, {result.updated} updated, "
            f"{result.unchanged} unchanged, {result.failed} failed"
        )
        return result
