"""
Registrar agent.

Wires the registry, kernel adapter, reconciler, health monitoring and the
escalation controller together and drives them from a periodic loop.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, TypeVar

import httpx

from flannelregistrar.config import RegistrarConfig, config
from flannelregistrar.exceptions import RegistryError
from flannelregistrar.models.enums import HealthStatus
from flannelregistrar.models.recovery import RecoveryReport
from flannelregistrar.models.routes import ReconcileResult, RestoreResult, VerifyResult
from flannelregistrar.monitoring.health import HealthChecker, HealthReporter
from flannelregistrar.monitoring.status import StatusStore
from flannelregistrar.network.fdb import FdbSynchronizer, FdbSyncResult
from flannelregistrar.network.parsing import parse_extra_routes, parse_host_gateway_map
from flannelregistrar.network.route_table import IPRouteTable, RouteTable
from flannelregistrar.network.topology import TopologyProber
from flannelregistrar.recovery.actions import RecoveryActions
from flannelregistrar.recovery.controller import EscalationController
from flannelregistrar.recovery.host import HostDelegate
from flannelregistrar.recovery.state import RecoveryStateStore
from flannelregistrar.registry.etcd import EtcdClient, KeyValueStore
from flannelregistrar.registry.subnets import SubnetRegistry
from flannelregistrar.routes.backup import RouteBackupStore
from flannelregistrar.routes.reconciler import RouteReconciler
from flannelregistrar.runtime.container import ContainerRuntime, DockerRuntime
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.retry import Clock, RetryPolicy

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class CycleResult:
    """What happened in one agent cycle. None means the step failed or did not run."""

    reconcile: ReconcileResult | None = None
    fdb: FdbSyncResult | None = None
    verify: VerifyResult | None = None
    health: HealthStatus | None = None
    recovery: RecoveryReport | None = None
    published: dict[str, bool] | None = None


class RegistrarAgent:
    """
    One host's registrar.

    All collaborators are injected; ``from_config`` builds the production set
    (pyroute2, etcd over HTTP, docker-py).
    """

    def __init__(
        self,
        cfg: RegistrarConfig,
        table: RouteTable,
        store: KeyValueStore,
        runtime: ContainerRuntime,
        host: HostDelegate | None = None,
        clock: Clock | None = None,
        http_client: httpx.Client | None = None,
    ):
        self.cfg = cfg
        self.table = table
        self.store = store
        self.runtime = runtime
        self.clock = clock or Clock()

        gateway_map = parse_host_gateway_map(cfg.HOST_GATEWAY_MAP)
        extra_routes = parse_extra_routes(cfg.FLANNEL_ROUTES_EXTRA)

        self.registry = SubnetRegistry(store, cfg.get_subnets_prefix())
        self.prober = TopologyProber(
            table,
            overlay_interface=cfg.FLANNEL_INTERFACE,
            overlay_prefix=cfg.FLANNEL_NETWORK_PREFIX,
            gateway_map=gateway_map,
            tunnel_prefixes=cfg.get_tunnel_prefixes(),
            tunnel_network_prefix=cfg.TUNNEL_NETWORK_PREFIX,
        )
        self.reconciler = RouteReconciler(
            table,
            self.registry,
            self.prober,
            RouteBackupStore(cfg.get_route_backup_path(), self.clock),
            local_public_ip=cfg.FLANNELD_PUBLIC_IP,
            manage_overlay_routes=cfg.MANAGE_FLANNEL_ROUTES,
            update_interval=cfg.ROUTES_UPDATE_INTERVAL,
            gateway_map=gateway_map,
            extra_routes=extra_routes,
            backup_prefixes=cfg.get_backup_prefixes(),
            backup_max_age=cfg.ROUTE_BACKUP_MAX_AGE,
            clock=self.clock,
        )
        self.fdb = FdbSynchronizer(
            table,
            device=cfg.FLANNEL_INTERFACE,
            gateway_map=gateway_map,
            local_public_ip=cfg.FLANNELD_PUBLIC_IP,
        )

        self.recovery_state = RecoveryStateStore(
            cfg.get_recovery_dir(), cfg.level_policies(), self.clock
        )
        self.status = StatusStore(cfg.get_status_file_path(), self.clock)
        self.checker = HealthChecker(
            self.status,
            table,
            runtime,
            store=store,
            recovery_state=self.recovery_state,
            overlay_interface=cfg.FLANNEL_INTERFACE,
        )
        self.reporter = HealthReporter(
            self.status,
            hostname=cfg.get_hostname(),
            health_file=cfg.get_health_file_path(),
            registry=self.registry,
            health_key=cfg.get_health_key(),
            endpoint=cfg.MONITORING_STATUS_ENDPOINT,
            clock=self.clock,
            http_client=http_client,
        )

        if host is None:
            host = HostDelegate(
                cfg.HOST_SYSTEMD_SERVICE,
                cfg.HOST_ACTION_TIMEOUT,
                runtime=runtime if isinstance(runtime, DockerRuntime) else None,
            )
        self.actions = RecoveryActions(
            table,
            runtime,
            host,
            fdb_sync=self.sync_fdb,
            overlay_interface=cfg.FLANNEL_INTERFACE,
            default_mtu=cfg.FLANNEL_MTU,
            restart_timeout=cfg.DOCKER_RESTART_TIMEOUT,
            health_timeout=cfg.CONTAINER_HEALTH_TIMEOUT,
            service_timeout=cfg.HOST_ACTION_TIMEOUT,
            clock=self.clock,
        )
        self.controller = EscalationController(
            self.recovery_state,
            self.actions,
            self.status,
            reevaluate=self.check_health,
            verify_retries=cfg.RECOVERY_VERIFY_RETRIES,
            verify_base_delay=cfg.RECOVERY_VERIFY_BASE_DELAY,
            clock=self.clock,
        )

        self.last_verify: VerifyResult | None = None
        self.last_publish: float | None = None
        self.started = False

    @classmethod
    def from_config(cls, cfg: RegistrarConfig | None = None) -> RegistrarAgent:
        cfg = cfg or config
        store = EtcdClient(
            cfg.ETCD_ENDPOINT,
            timeout=cfg.ETCD_TIMEOUT,
            retry=RetryPolicy(max_attempts=cfg.ETCD_RETRY_COUNT, delay=cfg.ETCD_RETRY_DELAY),
        )
        runtime = DockerRuntime(cfg.FLANNEL_CONTAINER_NAME, timeout=cfg.DOCKER_RESTART_TIMEOUT)
        return cls(cfg, IPRouteTable(), store, runtime)

    # =========================================================================
    # Steps
    # =========================================================================

    def _step(self, name: str, fn: Callable[[], T]) -> T | None:
        try:
            return fn()
        except Exception as e:
            logger.exception(f"Unexpected error in {name}: {e}")
            return None

    def load_state(self) -> None:
        self.recovery_state.load()
        self.status.load()

    def sync_fdb(self) -> FdbSyncResult:
        """Resync VXLAN forwarding entries with the current leases."""
        try:
            listing = self.registry.list_subnet_records()
        except RegistryError as e:
            logger.warning(f"Cannot sync FDB, etcd unavailable: {e}")
            return FdbSyncResult(failed=1)
        return self.fdb.sync(self.reconciler.remote_records(listing.records))

    def check_health(self) -> HealthStatus:
        return self.checker.run(self.last_verify)

    def verify_routes(self) -> VerifyResult:
        self.last_verify = self.reconciler.verify()
        return self.last_verify

    def cleanup_registry(self) -> int:
        try:
            return self.registry.cleanup_localhost_entries()
        except RegistryError as e:
            logger.warning(f"Cannot clean localhost entries, etcd unavailable: {e}")
            return 0

    def publish_health(self, force: bool = False) -> dict[str, bool] | None:
        now = self.clock.now()
        if (
            not force
            and self.last_publish is not None
            and now - self.last_publish < self.cfg.MONITORING_INTERVAL
        ):
            return None
        self.last_publish = now
        return self.reporter.publish()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start_up(self) -> RestoreResult | None:
        """Load persisted state, restore the route backup and clean the registry."""
        logger.info(
            f"Starting flannel-registrar on {self.cfg.get_hostname()} "
            f"(public IP {self.cfg.FLANNELD_PUBLIC_IP or 'unknown'}, "
            f"etcd {self.cfg.ETCD_ENDPOINT})"
        )
        self._step("state load", self.load_state)
        self._step(
            "history pruning",
            lambda: self.recovery_state.prune_history(self.cfg.RECOVERY_HISTORY_RETENTION),
        )
        restored = self._step("route restore", self.reconciler.restore_routes)
        removed = self._step("registry cleanup", self.cleanup_registry)
        if removed:
            logger.info(f"Removed {removed} localhost entries from etcd")
        self.started = True
        return restored

    def run_cycle(self) -> CycleResult:
        """
        One cycle: reconcile, FDB sync, verify, health check, recovery when
        needed and periodic health publication. A failing step is logged and
        the cycle continues.
        """
        if not self.started:
            self.start_up()

        result = CycleResult()
        result.reconcile = self._step("route reconciliation", self.reconciler.reconcile)
        result.fdb = self._step("FDB sync", self.sync_fdb)
        result.verify = self._step("route verification", self.verify_routes)
        result.health = self._step("health check", self.check_health)

        if result.health is not None and self._step("recovery check", self.controller.needs_recovery):
            result.recovery = self._step("recovery", self.controller.run)
            if result.recovery is not None:
                logger.info(f"Recovery result: {result.recovery.status}")

        result.published = self._step("health publication", self.publish_health)
        return result

    async def run_forever(self) -> None:
        """Run cycles every ``INTERVAL`` seconds until cancelled."""
        await asyncio.to_thread(self.start_up)
        while True:
            try:
                await asyncio.to_thread(self.run_cycle)
            except Exception as e:
                logger.error(f"Agent cycle failed: {e}")
            await asyncio.sleep(self.cfg.INTERVAL)


_agent: RegistrarAgent | None = None


def get_agent() -> RegistrarAgent:
    """Get the process-wide agent built from the global config."""
    global _agent
    if _agent is None:
        _agent = RegistrarAgent.from_config(config)
    return _agent
