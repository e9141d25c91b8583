"""
Remediation actions for each escalation level.

    INTERFACE  cycle the overlay interface and resync VXLAN FDB entries
    CONTAINER  restart the overlay daemon container and wait for it to be healthy
    SERVICE    restart the container engine on the host

Every action returns an ``ActionOutcome`` and collects diagnostics after the
attempt regardless of its result.
"""

from __future__ import annotations

import os
from typing import Callable

import psutil

from flannelregistrar.exceptions import ContainerRuntimeError, RouteCommandError
from flannelregistrar.models.enums import RecoveryLevel
from flannelregistrar.models.recovery import ActionOutcome
from flannelregistrar.network.fdb import FdbSyncResult
from flannelregistrar.network.route_table import RouteTable
from flannelregistrar.recovery.host import HostDelegate
from flannelregistrar.runtime.container import ContainerRuntime
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.retry import Clock

logger = get_logger(__name__)

POLL_INTERVAL = 5


class RecoveryActions:
    """
    Executes remediation actions against the kernel, Docker and the host.

    Args:
        table: Kernel networking adapter.
        runtime: Container runtime adapter.
        host: Host delegate used for the service level.
        fdb_sync: Callable resyncing FDB entries, run after interface cycling.
        overlay_interface: Overlay VXLAN device name.
        default_mtu: MTU used when the current one cannot be read.
    """

    def __init__(
        self,
        table: RouteTable,
        runtime: ContainerRuntime,
        host: HostDelegate,
        fdb_sync: Callable[[], FdbSyncResult] | None = None,
        overlay_interface: str = "flannel.1",
        default_mtu: int = 1370,
        restart_timeout: int = 60,
        health_timeout: int = 30,
        service_timeout: int = 120,
        clock: Clock | None = None,
    ):
        self.table = table
        self.runtime = runtime
        self.host = host
        self.fdb_sync = fdb_sync
        self.overlay_interface = overlay_interface
        self.default_mtu = default_mtu
        self.restart_timeout = restart_timeout
        self.health_timeout = health_timeout
        self.service_timeout = service_timeout
        self.clock = clock or Clock()

    def perform(self, level: RecoveryLevel) -> ActionOutcome:
        """Run the action of ``level``."""
        match level:
            case RecoveryLevel.INTERFACE:
                return self.cycle_interface()
            case RecoveryLevel.CONTAINER:
                return self.restart_container()
            case RecoveryLevel.SERVICE:
                return self.restart_service()

    # =========================================================================
    # Interface level
    # =========================================================================

    def cycle_interface(self) -> ActionOutcome:
        """Bring the overlay interface down and up, keeping its MTU."""
        name = self.overlay_interface
        link = self.table.get_link(name)
        if link is None:
            outcome = ActionOutcome(False, f"Interface {name} does not exist")
            outcome.diagnostics = self.collect_diagnostics("interface_cycle", name)
            return outcome

        mtu = link.mtu or self.default_mtu
        logger.info(f"Cycling interface {name} (mtu {mtu})")
        try:
            self.table.set_link_state(name, up=False)
            self.clock.sleep(2)
            self.table.set_link_state(name, up=True)
            current = self.table.get_link(name)
            if current is not None and current.mtu != mtu:
                logger.info(f"Restoring MTU of {name} to {mtu}")
                self.table.set_link_mtu(name, mtu)
        except RouteCommandError as e:
            logger.error(f"Failed to cycle interface {name}: {e}")
            outcome = ActionOutcome(False, f"Failed to cycle {name}: {e}")
            outcome.diagnostics = self.collect_diagnostics("interface_cycle", name)
            return outcome

        message = f"Cycled interface {name}"
        if self.fdb_sync is not None:
            fdb = self.fdb_sync()
            message += f", FDB {fdb.added} added {fdb.updated} updated {fdb.failed} failed"
        logger.info(message)
        return ActionOutcome(True, message, self.collect_diagnostics("interface_cycle", name))

    # =========================================================================
    # Container level
    # =========================================================================

    def check_container_health(self, container_id: str) -> tuple[bool, str]:
        """
        Whether the overlay container is healthy.

        Healthy means running, not flapping, Docker health ``none`` or
        ``healthy``, the overlay interface present and a trivial exec works.
        """
        try:
            status = self.runtime.inspect(container_id)
        except ContainerRuntimeError as e:
            return False, f"inspect failed: {e}"
        if status.flapping:
            return False, f"flapping ({status.restart_count} restarts, up {status.uptime}s)"
        if not status.running:
            return False, f"not running (state {status.state})"
        if status.health not in ("none", "healthy"):
            return False, f"health status {status.health}"
        if not self.table.link_exists(self.overlay_interface):
            return False, f"interface {self.overlay_interface} missing"
        if not self.runtime.exec_basic_check(container_id):
            return False, "exec check failed"
        return True, "healthy"

    def restart_container(self) -> ActionOutcome:
        """Restart the overlay container and poll until it is healthy."""
        try:
            container_id = self.runtime.find_flannel_container()
        except ContainerRuntimeError as e:
            return ActionOutcome(False, f"Cannot list containers: {e}", self.collect_diagnostics("container_restart", ""))
        if container_id is None:
            return ActionOutcome(False, "Flannel container not found", self.collect_diagnostics("container_restart", ""))

        before = self.collect_diagnostics("container_restart", container_id)
        logger.info(f"Restarting flannel container {container_id[:12]}")
        try:
            self.runtime.restart(container_id, timeout=self.restart_timeout)
        except ContainerRuntimeError as e:
            logger.error(f"Container restart failed: {e}")
            outcome = ActionOutcome(False, f"Restart failed: {e}")
            outcome.diagnostics = {"before": before, "after": self.collect_diagnostics("container_restart", container_id)}
            return outcome

        self.clock.sleep(POLL_INTERVAL)
        healthy, reason = False, "not checked"
        deadline = self.clock.now() + self.health_timeout
        while True:
            healthy, reason = self.check_container_health(container_id)
            if healthy or self.clock.now() >= deadline:
                break
            logger.debug(f"Waiting for flannel container: {reason}")
            self.clock.sleep(POLL_INTERVAL)

        after = self.collect_diagnostics("container_restart", container_id)
        diagnostics = {"before": before, "after": after}
        if healthy:
            logger.info("Flannel container restarted and healthy")
            return ActionOutcome(True, "Container restarted and healthy", diagnostics)
        logger.error(f"Flannel container unhealthy after restart: {reason}")
        return ActionOutcome(False, f"Container unhealthy after {self.health_timeout}s: {reason}", diagnostics)

    # =========================================================================
    # Service level
    # =========================================================================

    def _running_count(self) -> int:
        try:
            return self.runtime.running_count()
        except ContainerRuntimeError:
            return 0

    def restart_service(self) -> ActionOutcome:
        """
        Restart the Docker engine and wait for it and its containers.

        Success requires the engine to answer again; fewer than half of the
        previously running containers coming back is reported as a warning.
        """
        containers_before = self._running_count()
        logger.warning(f"Restarting Docker service ({containers_before} containers running)")

        if not self.host.run("restart", "docker"):
            return ActionOutcome(
                False,
                "Docker restart could not be issued",
                self.collect_diagnostics("service_restart", "docker"),
            )

        deadline = self.clock.now() + self.service_timeout
        while not self.runtime.ping():
            if self.clock.now() >= deadline:
                return ActionOutcome(
                    False,
                    f"Docker not reachable {self.service_timeout}s after restart",
                    self.collect_diagnostics("service_restart", "docker"),
                )
            self.clock.sleep(POLL_INTERVAL)

        containers_after = self._running_count()
        while containers_after * 2 < containers_before and self.clock.now() < deadline:
            self.clock.sleep(POLL_INTERVAL)
            containers_after = self._running_count()

        message = f"Docker restarted, {containers_after}/{containers_before} containers running"
        if containers_after * 2 < containers_before:
            logger.warning(f"Only {containers_after} of {containers_before} containers came back after Docker restart")
            message += " (fewer than half resurfaced)"
        else:
            logger.info(message)
        return ActionOutcome(True, message, self.collect_diagnostics("service_restart", "docker"))

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def collect_diagnostics(self, action_type: str, subject: str) -> dict:
        """Snapshot of the state relevant to an action, for the audit trail."""
        diagnostics: dict = {
            "timestamp": int(self.clock.now()),
            "action_type": action_type,
            "subject": subject,
        }

        if action_type == "container_restart" and subject:
            try:
                diagnostics["container"] = self.runtime.inspect(subject).to_dict()
            except ContainerRuntimeError as e:
                diagnostics["container"] = {"error": str(e)}
            diagnostics["logs"] = self.runtime.logs_tail(subject, 10).splitlines()[-10:]

        if action_type in ("container_restart", "interface_cycle"):
            link = self.table.get_link(self.overlay_interface)
            diagnostics["overlay_interface"] = (
                {"state": link.operstate, "up": link.admin_up, "mtu": link.mtu}
                if link is not None
                else "missing"
            )
            diagnostics["overlay_routes"] = [
                f"{r.destination} via {r.via or '-'}{' onlink' if r.onlink else ''}"
                for r in self.table.list_routes()
                if r.device == self.overlay_interface
            ]

        if action_type == "service_restart":
            diagnostics["engine"] = self.runtime.engine_info()
            diagnostics["running_containers"] = self._running_count()
            diagnostics["in_container"] = self.host.in_container

        diagnostics["system"] = system_snapshot()
        return diagnostics


def system_snapshot() -> dict:
    """Load average, memory and disk usage of the host."""
    snapshot: dict = {}
    try:
        snapshot["load"] = [round(x, 2) for x in os.getloadavg()]
    except OSError:
        snapshot["load"] = []
    memory = psutil.virtual_memory()
    snapshot["memory_percent"] = memory.percent
    snapshot["memory_available_mb"] = memory.available // (1024 * 1024)
    try:
        snapshot["disk_percent"] = psutil.disk_usage("/").percent
    except OSError:
        snapshot["disk_percent"] = None
    return snapshot
