"""
Container runtime access for the overlay daemon container.

``ContainerRuntime`` is the narrow contract used by remediation actions and
health checks; ``DockerRuntime`` implements it with the docker-py SDK.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone

import docker
from docker.errors import APIError, DockerException, NotFound
from docker.models.containers import Container

from flannelregistrar.exceptions import ContainerRuntimeError, FlannelContainerNotFoundError
from flannelregistrar.models.recovery import ContainerStatus
from flannelregistrar.utils.logger import get_logger

log = get_logger(__name__)

FLANNEL_IMAGES = ("quay.io/coreos/flannel", "flannelcni/flannel")


# =============================================================================
# ContainerRuntime Interface
# =============================================================================


class ContainerRuntime(ABC):
    """Container engine operations consumed by the registrar."""

    @abstractmethod
    def ping(self) -> bool: ...

    @abstractmethod
    def list_running(self, filters: dict | None = None) -> list[str]: ...

    @abstractmethod
    def find_flannel_container(self) -> str | None: ...

    @abstractmethod
    def inspect(self, container_id: str) -> ContainerStatus: ...

    @abstractmethod
    def restart(self, container_id: str, timeout: int) -> None: ...

    @abstractmethod
    def exec_basic_check(self, container_id: str) -> bool: ...

    def running_count(self) -> int:
        return len(self.list_running())

    def logs_tail(self, container_id: str, lines: int = 10) -> str:
        return ""

    def engine_info(self) -> dict:
        return {}


def _parse_started_at(value: str) -> datetime | None:
    """Parse Docker's RFC 3339 timestamps (nanosecond precision)."""
    if not value or value.startswith("0001-"):
        return None
    value = value.rstrip("Z")
    if "." in value:
        head, frac = value.split(".", 1)
        value = f"{head}.{frac[:6]}"
    try:
        return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def status_from_attrs(container_id: str, attrs: dict, now: datetime | None = None) -> ContainerStatus:
    """Build a ContainerStatus from ``docker inspect`` attributes."""
    state = attrs.get("State") or {}
    host_config = attrs.get("HostConfig") or {}
    health = (state.get("Health") or {}).get("Status") or "none"
    started = _parse_started_at(state.get("StartedAt", ""))
    now = now or datetime.now(timezone.utc)
    uptime = int((now - started).total_seconds()) if started else 0
    return ContainerStatus(
        container_id=container_id,
        name=(attrs.get("Name") or "").lstrip("/"),
        state=state.get("Status", "unknown"),
        running=bool(state.get("Running", False)),
        health=health,
        restart_count=int(attrs.get("RestartCount", 0) or 0),
        uptime=max(0, uptime),
        network_mode=host_config.get("NetworkMode", ""),
        net_admin="NET_ADMIN" in (host_config.get("CapAdd") or []),
    )


# =============================================================================
# DockerRuntime Class
# =============================================================================


class DockerRuntime(ContainerRuntime):
    """
    ContainerRuntime backed by docker-py.

    Attributes:
        client: The docker-py client instance (created lazily).
        container_name: Name used to locate the overlay daemon container.
    """

    def __init__(self, container_name: str = "flannel", timeout: int | None = 60):
        self.container_name = container_name
        self.timeout = timeout
        self._client = None

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = docker.from_env(timeout=self.timeout)
            except DockerException as e:
                raise ContainerRuntimeError(f"Failed to connect to Docker: {e}") from e
        return self._client

    def _get(self, container_id: str) -> Container:
        try:
            return self.client.containers.get(container_id)
        except NotFound:
            raise FlannelContainerNotFoundError(container_id)
        except APIError as e:
            raise ContainerRuntimeError(f"Failed to get container {container_id}: {e}") from e

    # =========================================================================
    # Queries
    # =========================================================================

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except (DockerException, ContainerRuntimeError) as e:
            log.debug(f"Docker ping failed: {e}")
            return False

    def list_running(self, filters: dict | None = None) -> list[str]:
        try:
            return [c.id for c in self.client.containers.list(filters=filters or {})]
        except DockerException as e:
            raise ContainerRuntimeError(f"Failed to list containers: {e}") from e

    def find_flannel_container(self) -> str | None:
        """
        Locate the overlay daemon container.

        Order: exact name, partial name, then known flannel images.
        """
        try:
            containers = self.client.containers.list()
        except DockerException as e:
            raise ContainerRuntimeError(f"Failed to list containers: {e}") from e

        for container in containers:
            if container.name == self.container_name:
                return container.id
        for container in containers:
            if self.container_name in container.name:
                return container.id
        for image in FLANNEL_IMAGES:
            try:
                matches = self.client.containers.list(filters={"ancestor": image})
            except DockerException as e:
                log.debug(f"Ancestor lookup for {image} failed: {e}")
                continue
            if matches:
                return matches[0].id
        return None

    def inspect(self, container_id: str) -> ContainerStatus:
        container = self._get(container_id)
        return status_from_attrs(container.id, container.attrs)

    def logs_tail(self, container_id: str, lines: int = 10) -> str:
        try:
            raw = self._get(container_id).logs(tail=lines)
        except (DockerException, ContainerRuntimeError) as e:
            return f"<logs unavailable: {e}>"
        return raw.decode("utf-8", errors="replace")

    def engine_info(self) -> dict:
        try:
            version = self.client.version()
            info = self.client.info()
        except DockerException as e:
            return {"error": str(e)}
        return {
            "version": version.get("Version", ""),
            "containers_running": info.get("ContainersRunning", 0),
            "storage_driver": info.get("Driver", ""),
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def restart(self, container_id: str, timeout: int) -> None:
        try:
            self._get(container_id).restart(timeout=timeout)
        except APIError as e:
            raise ContainerRuntimeError(f"Failed to restart {container_id}: {e}") from e

    def exec_basic_check(self, container_id: str) -> bool:
        """The container answers a trivial exec (``ls /etc/flannel``)."""
        try:
            result = self._get(container_id).exec_run(["ls", "/etc/flannel"])
        except (DockerException, ContainerRuntimeError) as e:
            log.debug(f"Exec check in {container_id} failed: {e}")
            return False
        return result.exit_code == 0

    def run_privileged_helper(self, command: str) -> bool:
        """Run ``command`` in the host's root via a throwaway privileged container."""
        try:
            self.client.containers.run(
                "alpine:latest",
                ["chroot", "/host", "/bin/sh", "-c", command],
                remove=True,
                privileged=True,
                pid_mode="host",
                network_mode="host",
                volumes={"/": {"bind": "/host", "mode": "rw"}},
            )
        except DockerException as e:
            log.warning(f"Privileged helper container failed: {e}")
            return False
        return True


# =============================================================================
# Global Instance
# =============================================================================

_runtime: DockerRuntime | None = None


def get_container_runtime(container_name: str = "flannel") -> DockerRuntime:
    """Lazily initialized DockerRuntime singleton."""
    global _runtime
    if _runtime is None:
        _runtime = DockerRuntime(container_name)
    return _runtime
