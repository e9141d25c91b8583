"""Flannel subnet lease access on top of a key-value store."""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import ValidationError

from flannelregistrar.exceptions import InvalidRegistryKeyError
from flannelregistrar.models.registry import HealthDocument, SubnetLease
from flannelregistrar.models.routes import SubnetRecord
from flannelregistrar.registry.etcd import KeyValueStore
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.validation import LOCALHOST_IP, subnet_from_key

logger = get_logger(__name__)


@dataclass
class SubnetListing:
    """Subnet records read in one pass plus the keys that were rejected."""

    records: list[SubnetRecord] = field(default_factory=list)
    rejected_keys: list[str] = field(default_factory=list)


class SubnetRegistry:
    """
    Reads flannel subnet leases and publishes host documents.

    Leases are never cached: every call re-reads the store.
    """

    def __init__(self, store: KeyValueStore, subnets_prefix: str):
        self.store = store
        self.subnets_prefix = subnets_prefix if subnets_prefix.endswith("/") else f"{subnets_prefix}/"

    def _parse_lease(self, key: str, raw: str) -> SubnetLease | None:
        try:
            return SubnetLease.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Skipping subnet {key}: invalid lease value ({e.error_count()} errors)")
            return None

    def list_subnet_records(self) -> SubnetListing:
        """
        Read every subnet lease.

        Keys that are date-like, not shaped ``a.b.c.d-len`` or concatenated
        indicate registry corruption and are counted as rejected, never
        turned into routes.
        """
        listing = SubnetListing()
        for key in self.store.list_keys(self.subnets_prefix):
            subnet = subnet_from_key(key)
            if subnet is None:
                logger.warning(f"Rejecting malformed subnet key: {key}")
                listing.rejected_keys.append(key)
                continue
            try:
                raw = self.store.get(key)
            except InvalidRegistryKeyError:
                logger.warning(f"Rejecting concatenated subnet key: {key}")
                listing.rejected_keys.append(key)
                continue
            if raw is None:
                # Lease expired between list and get
                continue
            lease = self._parse_lease(key, raw)
            if lease is None:
                listing.rejected_keys.append(key)
                continue
            listing.records.append(
                SubnetRecord(
                    subnet=subnet,
                    public_ip=lease.public_ip,
                    key=key,
                    hostname=lease.hostname,
                    vtep_mac=lease.vtep_mac,
                )
            )
        logger.debug(
            f"Read {len(listing.records)} subnet leases, "
            f"rejected {len(listing.rejected_keys)} keys"
        )
        return listing

    def cleanup_localhost_entries(self) -> int:
        """Delete leases owned by 127.0.0.1. Returns the number removed."""
        removed = 0
        for record in self.list_subnet_records().records:
            if record.public_ip != LOCALHOST_IP:
                continue
            logger.info(f"Removing localhost subnet entry {record.key}")
            if self.store.delete(record.key):
                removed += 1
        if removed:
            logger.info(f"Removed {removed} localhost subnet entries from etcd")
        return removed

    def publish_health(self, key: str, document: HealthDocument) -> bool:
        return self.store.put(key, document.model_dump_json())
