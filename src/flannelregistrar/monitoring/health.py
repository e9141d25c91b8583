"""
Health evaluation and publication.

``HealthChecker`` turns probes into component statuses; ``HealthReporter``
publishes the resulting document to disk, an optional HTTP endpoint and etcd.
"""

from __future__ import annotations

import httpx

from flannelregistrar.exceptions import ContainerRuntimeError, RegistryError, StateStoreError
from flannelregistrar.models.enums import HealthStatus
from flannelregistrar.models.registry import HealthDocument
from flannelregistrar.models.routes import VerifyResult
from flannelregistrar.monitoring.status import StatusStore
from flannelregistrar.network.route_table import RouteTable
from flannelregistrar.recovery.state import RecoveryStateStore
from flannelregistrar.registry.etcd import KeyValueStore
from flannelregistrar.registry.subnets import SubnetRegistry
from flannelregistrar.runtime.container import ContainerRuntime
from flannelregistrar.utils.fileio import atomic_write_text
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.retry import Clock

logger = get_logger(__name__)

# Link states that are normal for a VXLAN device
_HEALTHY_OPERSTATES = ("UNKNOWN", "UP")


class HealthChecker:
    """Evaluates network and system components into a StatusStore."""

    def __init__(
        self,
        status: StatusStore,
        table: RouteTable,
        runtime: ContainerRuntime,
        store: KeyValueStore | None = None,
        recovery_state: RecoveryStateStore | None = None,
        overlay_interface: str = "flannel.1",
    ):
        self.status = status
        self.table = table
        self.runtime = runtime
        self.store = store
        self.recovery_state = recovery_state
        self.overlay_interface = overlay_interface

    def _update(self, component: str, status: HealthStatus, message: str) -> None:
        try:
            self.status.update(component, status, message)
        except StateStoreError as e:
            logger.error(f"Component status not persisted: {e}")

    def check_interface(self) -> HealthStatus:
        link = self.table.get_link(self.overlay_interface)
        if link is None:
            status, message = HealthStatus.CRITICAL, f"{self.overlay_interface} missing"
        elif not link.admin_up:
            status, message = HealthStatus.CRITICAL, f"{self.overlay_interface} is down"
        elif link.operstate in _HEALTHY_OPERSTATES:
            status, message = HealthStatus.HEALTHY, f"{self.overlay_interface} state {link.operstate}"
        else:
            status, message = HealthStatus.DEGRADED, f"{self.overlay_interface} state {link.operstate}"
        self._update("network.interface", status, message)
        return status

    def check_routes(self, verify_result: VerifyResult) -> HealthStatus:
        if verify_result.ok:
            status, message = HealthStatus.HEALTHY, f"{verify_result.expected} routes present"
        else:
            status = HealthStatus.DEGRADED
            message = f"{len(verify_result.unresolved)}/{verify_result.expected} routes missing"
        self._update("network.routes", status, message)
        return status

    def check_etcd(self) -> HealthStatus | None:
        if self.store is None:
            return None
        if self.store.is_healthy():
            status, message = HealthStatus.HEALTHY, "etcd reachable"
        else:
            status, message = HealthStatus.DEGRADED, "etcd unreachable"
        self._update("network.etcd", status, message)
        return status

    def check_docker(self) -> HealthStatus:
        if self.runtime.ping():
            status, message = HealthStatus.HEALTHY, "docker reachable"
        else:
            status, message = HealthStatus.CRITICAL, "docker not responding"
        self._update("system.docker", status, message)
        return status

    def check_container(self) -> HealthStatus:
        try:
            container_id = self.runtime.find_flannel_container()
            container = self.runtime.inspect(container_id) if container_id else None
        except ContainerRuntimeError as e:
            self._update("system.container", HealthStatus.DEGRADED, f"cannot inspect: {e}")
            return HealthStatus.DEGRADED

        if container is None:
            status, message = HealthStatus.CRITICAL, "flannel container not found"
        elif not container.running:
            status, message = HealthStatus.CRITICAL, f"flannel container {container.state}"
        elif container.flapping:
            status = HealthStatus.DEGRADED
            message = f"flannel container flapping ({container.restart_count} restarts)"
        elif container.health not in ("none", "healthy"):
            status, message = HealthStatus.DEGRADED, f"flannel container health {container.health}"
        else:
            status, message = HealthStatus.HEALTHY, f"flannel container running ({container.uptime}s)"
        self._update("system.container", status, message)
        return status

    def check_state_files(self) -> HealthStatus | None:
        if self.recovery_state is None:
            return None
        if self.recovery_state.last_write_error:
            status, message = HealthStatus.DEGRADED, self.recovery_state.last_write_error
        else:
            status, message = HealthStatus.HEALTHY, "state files writable"
        self._update("system.state", status, message)
        return status

    def run(self, verify_result: VerifyResult | None = None) -> HealthStatus:
        """Run every check and return the folded system status."""
        self.check_interface()
        if verify_result is not None:
            self.check_routes(verify_result)
        self.check_etcd()
        if self.check_docker() == HealthStatus.HEALTHY:
            self.check_container()
        self.check_state_files()
        overall = self.status.system_status()
        logger.info(f"Health check completed: system is {overall.value}")
        return overall


class HealthReporter:
    """Publishes the health document to disk, HTTP and etcd."""

    def __init__(
        self,
        status: StatusStore,
        hostname: str,
        health_file: str,
        registry: SubnetRegistry | None = None,
        health_key: str = "",
        endpoint: str = "",
        clock: Clock | None = None,
        http_client: httpx.Client | None = None,
    ):
        self.status = status
        self.hostname = hostname
        self.health_file = health_file
        self.registry = registry
        self.health_key = health_key
        self.endpoint = endpoint
        self.clock = clock or Clock()
        self.http_client = http_client

    def build_document(self) -> HealthDocument:
        issues = [
            f"{s.component}: {s.status.value}: {s.message}"
            for s in self.status.all()
            if s.status != HealthStatus.HEALTHY
        ]
        overall = self.status.system_status()
        if overall == HealthStatus.UNKNOWN:
            message = "No health data collected yet"
        elif issues:
            message = f"{len(issues)} components with issues"
        else:
            message = "All components healthy"
        return HealthDocument(
            status=overall.value,
            last_check=int(self.clock.now()),
            message=message,
            hostname=self.hostname,
            issues=issues,
        )

    def _post(self, document: HealthDocument) -> bool:
        try:
            if self.http_client is not None:
                response = self.http_client.post(self.endpoint, json=document.model_dump())
            else:
                response = httpx.post(self.endpoint, json=document.model_dump(), timeout=5.0)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Status endpoint returned HTTP {e.response.status_code}")
            return False
        except httpx.RequestError as e:
            logger.warning(f"Failed to POST health status to {self.endpoint}: {e}")
            return False
        return True

    def publish(self) -> dict[str, bool]:
        """
        Publish the current document to every configured sink.

        Returns:
            Sink name -> whether publishing to it succeeded.
        """
        document = self.build_document()
        results: dict[str, bool] = {}

        try:
            atomic_write_text(self.health_file, document.model_dump_json(indent=2))
            results["file"] = True
        except StateStoreError as e:
            logger.error(f"Health document not written: {e}")
            results["file"] = False

        if self.endpoint:
            results["http"] = self._post(document)

        if self.registry is not None and self.health_key:
            try:
                results["etcd"] = self.registry.publish_health(self.health_key, document)
            except RegistryError as e:
                logger.warning(f"Failed to publish health to etcd: {e}")
                results["etcd"] = False

        logger.debug(f"Published health status {document.status}: {results}")
        return results
