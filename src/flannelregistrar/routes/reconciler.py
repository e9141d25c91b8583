"""
Route reconciler: converges the kernel routing table toward the registry.

One pass:
    1. Rate limit (``update_interval``), bypassed by forced passes
    2. Host-to-host /24 routes from the gateway map
    3. Read subnet leases, rejecting malformed keys
    4. Per remote subnet: overlay-managed skip, local bridge, or via route
    5. Operator extra static routes
    6. Route backup snapshot
    7. Repair of on-link overlay routes that shadow a local bridge

Each step is idempotent; a partially applied pass is corrected by the next.
"""

from __future__ import annotations

from flannelregistrar.exceptions import RegistryError, RouteCommandError, StateStoreError
from flannelregistrar.models.enums import RouteClass
from flannelregistrar.models.network import RouteEntry
from flannelregistrar.models.routes import (
    DesiredRoute,
    ExtraRoute,
    GatewayMapping,
    ReconcileResult,
    RestoreResult,
    RouteBackupEntry,
    SubnetRecord,
    VerifyResult,
)
from flannelregistrar.network.route_table import RouteTable
from flannelregistrar.network.topology import TopologyProber
from flannelregistrar.registry.subnets import SubnetRegistry
from flannelregistrar.routes.backup import RouteBackupStore
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.retry import Clock
from flannelregistrar.utils.validation import LOCALHOST_IP, is_valid_ip, slash24_of

logger = get_logger(__name__)


class RouteReconciler:
    """
    Computes desired routes from subnet leases and applies the difference.

    Attributes:
        last_pass: Clock time at which the last full pass started, or None.
    """

    def __init__(
        self,
        table: RouteTable,
        registry: SubnetRegistry,
        prober: TopologyProber,
        backup: RouteBackupStore,
        local_public_ip: str = "",
        manage_overlay_routes: bool = False,
        update_interval: int = 120,
        gateway_map: list[GatewayMapping] | None = None,
        extra_routes: list[ExtraRoute] | None = None,
        backup_prefixes: list[str] | None = None,
        backup_max_age: int = 3600,
        clock: Clock | None = None,
    ):
        self.table = table
        self.registry = registry
        self.prober = prober
        self.backup = backup
        self.local_public_ip = local_public_ip
        self.manage_overlay_routes = manage_overlay_routes
        self.update_interval = update_interval
        self.gateway_map = list(gateway_map or [])
        self.extra_routes = list(extra_routes or [])
        self.backup_prefixes = backup_prefixes if backup_prefixes is not None else ["10."]
        self.backup_max_age = backup_max_age
        self.clock = clock or Clock()
        self.last_pass: float | None = None

    # =========================================================================
    # Full pass
    # =========================================================================

    def reconcile(self, force: bool = False) -> ReconcileResult:
        """
        Run one reconciliation pass.

        Args:
            force: Ignore the rate limit (used after failed verification).

        Returns:
            Counters of the pass; ``ran`` is False when rate limited.
        """
        now = self.clock.now()
        if (
            not force
            and self.last_pass is not None
            and now - self.last_pass < self.update_interval
        ):
            logger.debug(
                f"Skipping route update, last pass {int(now - self.last_pass)}s ago "
                f"(interval {self.update_interval}s)"
            )
            return ReconcileResult(ran=False)
        self.last_pass = now

        result = ReconcileResult()
        logger.info("Updating routes for flannel subnets")

        self.ensure_host_routes()

        try:
            listing = self.registry.list_subnet_records()
        except RegistryError as e:
            logger.error(f"Cannot read subnets from etcd, keeping current routes: {e}")
            result.failed += 1
            self.apply_extra_routes()
            return result

        result.rejected_keys = len(listing.rejected_keys)
        result.skipped += result.rejected_keys

        records = self.remote_records(listing.records)
        self.prober.begin_pass([r.public_ip for r in records])

        for record in records:
            self._reconcile_subnet(record, result)

        self.apply_extra_routes()
        self.backup_routes()
        self.repair_onlink_routes()

        logger.info(f"Route management completed: {result.summary()}")
        return result

    def remote_records(self, records: list[SubnetRecord]) -> list[SubnetRecord]:
        """Drop leases owned by localhost or by this host."""
        remote = []
        for record in records:
            if record.public_ip == LOCALHOST_IP:
                logger.debug(f"Ignoring localhost-owned subnet {record.subnet}")
                continue
            if self.local_public_ip and record.public_ip == self.local_public_ip:
                logger.debug(f"Ignoring own subnet {record.subnet}")
                continue
            remote.append(record)
        return remote

    def desired_route(self, record: SubnetRecord) -> DesiredRoute:
        """Classify a remote subnet into the route that should carry it."""
        bridge = self.prober.is_locally_bridged(record.subnet)
        if bridge:
            return DesiredRoute(record.subnet, device=bridge, classification=RouteClass.LOCAL_BRIDGE)
        gateway = self.prober.resolve_gateway(record.public_ip)
        if gateway != record.public_ip:
            return DesiredRoute(record.subnet, via=gateway, classification=RouteClass.GATEWAY)
        return DesiredRoute(record.subnet, via=record.public_ip, classification=RouteClass.DIRECT)

    def _is_protected(self, subnet: str) -> bool:
        return not self.manage_overlay_routes and self.prober.is_overlay_managed_route(subnet)

    def _reconcile_subnet(self, record: SubnetRecord, result: ReconcileResult) -> None:
        subnet = record.subnet
        if self._is_protected(subnet):
            logger.debug(f"Skipping flannel-managed route {subnet} (management disabled)")
            result.overlay_skipped += 1
            return

        if not is_valid_ip(record.public_ip):
            logger.warning(f"Skipping {subnet}: invalid owner IP {record.public_ip!r}")
            result.skipped += 1
            return

        desired = self.desired_route(record)
        try:
            if desired.classification == RouteClass.LOCAL_BRIDGE:
                self._apply_bridge_route(desired, result)
            else:
                self._apply_via_route(desired, result)
        except RouteCommandError as e:
            logger.error(f"Failed to route {subnet}: {e}")
            result.failed += 1
            result.failed_subnets.append(subnet)

    # =========================================================================
    # Route application
    # =========================================================================

    def _delete_routes(self, routes: list[RouteEntry]) -> None:
        for route in routes:
            try:
                self.table.delete_route(route.destination, via=route.via, device=route.device)
            except RouteCommandError as e:
                logger.debug(f"Could not delete {route.destination}: {e}")

    def _apply_bridge_route(self, desired: DesiredRoute, result: ReconcileResult) -> None:
        live = self.table.routes_to(desired.destination)
        result.bridge_direct += 1
        if (
            len(live) == 1
            and live[0].device == desired.device
            and not live[0].via
            and live[0].scope_link
        ):
            logger.debug(f"Bridge route for {desired.destination} via {desired.device} in place")
            return

        logger.info(f"Subnet {desired.destination} is local, using bridge {desired.device}")
        self._replace_bridge_route(desired.destination, desired.device)
        logger.info(f"Added direct bridge route for {desired.destination} dev {desired.device}")

    def _replace_bridge_route(self, destination: str, bridge: str) -> None:
        """Swap in the scope-link bridge route, then drop whatever else is left."""
        self.table.replace_route(destination, device=bridge, scope_link=True)
        self._delete_routes(
            [r for r in self.table.routes_to(destination) if r.via or r.device != bridge]
        )

    def _route_with_fallback(self, destination: str, via: str, replace: bool = False) -> None:
        """Add (or replace) ``destination via``, retrying once with the outbound interface."""
        apply = self.table.replace_route if replace else self.table.add_route
        try:
            apply(destination, via=via)
        except RouteCommandError as e:
            device = self.table.outbound_device(via)
            if not device:
                raise
            logger.warning(f"Routing {destination} via {via} failed ({e}), retrying with dev {device}")
            apply(destination, via=via, device=device)

    def _apply_via_route(self, desired: DesiredRoute, result: ReconcileResult) -> None:
        destination, via = desired.destination, desired.via
        live = self.table.routes_to(destination)
        correct = [r for r in live if r.is_direct_via(via)]

        if correct and len(live) == 1:
            logger.debug(f"Route for {destination} via {via} already exists")
            result.unchanged += 1
            return

        if correct:
            # Right route present next to stale duplicates
            stale = [r for r in live if not r.is_direct_via(via)]
            logger.info(f"Removing {len(stale)} stale routes for {destination}")
            self._delete_routes(stale)
            result.updated += 1
            return

        if live:
            for route in live:
                if route.onlink:
                    logger.info(f"Removing problematic onlink route for {destination} dev {route.device}")
                else:
                    logger.info(f"Replacing route for {destination} via {route.via or route.device} with via {via}")
            # Old routes stay until the new one is in
            self._route_with_fallback(destination, via, replace=True)
            self._delete_routes([r for r in self.table.routes_to(destination) if not r.is_direct_via(via)])
            result.updated += 1
            return

        kind = "gateway" if desired.classification == RouteClass.GATEWAY else "direct"
        self._route_with_fallback(destination, via)
        logger.info(f"Added {kind} route for {destination} via {via}")
        result.added += 1

    # =========================================================================
    # Host routes and extra routes
    # =========================================================================

    def ensure_host_routes(self) -> int:
        """
        Ensure /24 routes toward every mapped host via its gateway.

        Returns:
            Number of mappings whose host route is in place.
        """
        ok = 0
        for mapping in self.gateway_map:
            if "/" in mapping.host:
                continue
            network = slash24_of(mapping.host)
            if network is None:
                continue
            live = self.table.routes_to(network)
            if any(r.via == mapping.gateway for r in live):
                ok += 1
                continue
            if any(r.scope_link and not r.via for r in live):
                logger.debug(f"{network} is directly connected, no host route needed")
                ok += 1
                continue

            device = self.table.outbound_device(mapping.gateway) or ""
            try:
                self.table.add_route(network, via=mapping.gateway, device=device)
            except RouteCommandError as e:
                if not device:
                    logger.error(f"Failed to add host route {network} via {mapping.gateway}: {e}")
                    continue
                try:
                    self.table.add_route(network, via=mapping.gateway)
                except RouteCommandError as e2:
                    logger.error(f"Failed to add host route {network} via {mapping.gateway}: {e2}")
                    continue
            logger.info(f"Added host route {network} via {mapping.gateway}")
            ok += 1
        return ok

    def apply_extra_routes(self) -> int:
        """
        Apply operator supplied static routes.

        Returns:
            Number of extra routes changed in the kernel.
        """
        changed = 0
        for extra in self.extra_routes:
            if self._is_protected(extra.subnet):
                logger.warning(
                    f"Not applying extra route {extra.subnet}: flannel-managed and "
                    f"MANAGE_FLANNEL_ROUTES is disabled"
                )
                continue

            device = ""
            if extra.interface:
                if self.table.link_exists(extra.interface):
                    device = extra.interface
                else:
                    logger.warning(f"Interface {extra.interface} for extra route {extra.subnet} not found")

            live = self.table.routes_to(extra.subnet)
            if (
                len(live) == 1
                and live[0].is_direct_via(extra.gateway)
                and (not device or live[0].device == device)
            ):
                continue
            try:
                self.table.replace_route(extra.subnet, via=extra.gateway, device=device)
            except RouteCommandError as e:
                logger.error(f"Failed to apply extra route {extra.subnet} via {extra.gateway}: {e}")
                continue
            logger.info(f"Applied extra route {extra.subnet} via {extra.gateway}{f' dev {device}' if device else ''}")
            changed += 1
        return changed

    # =========================================================================
    # Backup and restore
    # =========================================================================

    def _is_backed_up(self, destination: str) -> bool:
        return any(destination.startswith(prefix) for prefix in self.backup_prefixes)

    def snapshot(self) -> list[RouteBackupEntry]:
        return [
            RouteBackupEntry(subnet=r.destination, via=r.via, dev=r.device)
            for r in self.table.list_routes()
            if self._is_backed_up(r.destination)
        ]

    def backup_routes(self) -> bool:
        """Write the backup snapshot. Returns False if the write failed."""
        entries = self.snapshot()
        try:
            self.backup.save(entries)
        except StateStoreError as e:
            logger.error(f"Route backup not saved, restart recovery will be stale: {e}")
            return False
        return True

    def restore_routes(self) -> RestoreResult:
        """Restore routes from a backup younger than ``backup_max_age``."""
        entries = self.backup.load(max_age=self.backup_max_age)
        if entries is None:
            return RestoreResult(reason="no recent backup")

        result = RestoreResult(total=len(entries))
        self.prober.begin_pass()
        for entry in entries:
            if self._is_protected(entry.subnet):
                logger.debug(f"Not restoring flannel-managed route {entry.subnet}")
                result.skipped += 1
                continue
            device = entry.dev if entry.dev and self.table.link_exists(entry.dev) else ""
            if not entry.via and not device:
                logger.debug(f"Cannot restore {entry.subnet}: device {entry.dev} missing")
                result.skipped += 1
                continue
            try:
                self.table.replace_route(
                    entry.subnet,
                    via=entry.via,
                    device=device,
                    scope_link=not entry.via,
                )
            except RouteCommandError as e:
                logger.warning(f"Failed to restore route {entry.subnet}: {e}")
                continue
            result.restored += 1

        logger.info(f"Restored {result.restored}/{result.total} routes from backup")
        return result

    # =========================================================================
    # Post-pass repair and verification
    # =========================================================================

    def repair_onlink_routes(self) -> int:
        """
        Replace on-link overlay routes that point at a locally bridged subnet.

        Returns:
            Number of routes repaired.
        """
        repaired = 0
        overlay = self.prober.overlay_interface
        for route in self.table.list_routes():
            if route.device != overlay or not route.onlink:
                continue
            bridge = self.prober.is_locally_bridged(route.destination)
            if bridge is None:
                continue
            logger.warning(
                f"Found onlink route {route.destination} dev {overlay} for local "
                f"bridge {bridge}, fixing"
            )
            try:
                self._replace_bridge_route(route.destination, bridge)
            except RouteCommandError as e:
                logger.error(f"Failed to add bridge route for {route.destination} via {bridge}: {e}")
                continue
            repaired += 1
        return repaired

    def _is_satisfied(self, desired: DesiredRoute) -> bool:
        live = self.table.routes_to(desired.destination)
        if desired.is_scope_link:
            return any(r.device == desired.device and not r.via for r in live)
        return any(r.is_direct_via(desired.via) for r in live)

    def verify(self) -> VerifyResult:
        """
        Check every expected route is present; force a pass if any is missing.
        """
        result = VerifyResult()
        try:
            listing = self.registry.list_subnet_records()
        except RegistryError as e:
            logger.warning(f"Cannot verify routes, etcd unavailable: {e}")
            return result

        records = [
            r
            for r in self.remote_records(listing.records)
            if is_valid_ip(r.public_ip) and not self._is_protected(r.subnet)
        ]
        self.prober.begin_pass([r.public_ip for r in records])
        for record in records:
            result.expected += 1
            if not self._is_satisfied(self.desired_route(record)):
                result.missing.append(record.subnet)

        if result.missing:
            logger.warning(
                f"Missing {len(result.missing)}/{result.expected} routes "
                f"({', '.join(result.missing)}), forcing route update"
            )
            self.last_pass = None
            result.reconciled = self.reconcile(force=True)
            result.still_missing = [
                r.subnet
                for r in records
                if r.subnet in result.missing and not self._is_satisfied(self.desired_route(r))
            ]
            if result.still_missing:
                logger.warning(f"Still missing after forced update: {', '.join(result.still_missing)}")
            else:
                logger.info(f"Forced route update restored {len(result.missing)} routes")
        else:
            logger.debug(f"All {result.expected} expected routes present")
        return result

    def route_summary(self) -> dict:
        """Live overlay routes grouped by shape, for operators."""
        routes = [r for r in self.table.list_routes() if self._is_backed_up(r.destination)]
        return {
            "total": len(routes),
            "via": sum(1 for r in routes if r.via and not r.onlink),
            "bridge": sum(1 for r in routes if r.scope_link and not r.via),
            "onlink": sum(1 for r in routes if r.onlink),
            "overlay_device": sum(1 for r in routes if r.device == self.prober.overlay_interface),
            "routes": routes,
        }
