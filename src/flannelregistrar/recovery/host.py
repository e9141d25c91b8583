"""Running host-level actions, directly or from inside a container."""

from __future__ import annotations

import os
import re
import socket
import subprocess

from flannelregistrar.runtime.container import DockerRuntime
from flannelregistrar.utils.logger import get_logger

logger = get_logger(__name__)

_CONTAINER_ID_RE = re.compile(r"^([0-9a-f]{12}|[0-9a-f]{64})$")


def is_running_in_container(
    environ: dict[str, str] | None = None,
    hostname: str | None = None,
    root: str = "/",
) -> bool:
    """
    Detect whether this process runs inside a container.

    Signals: ``/.dockerenv``, docker in ``/proc/self/cgroup``,
    ``KUBERNETES_SERVICE_HOST``/``DOCKER_CONTAINER`` in the environment,
    or a hostname that looks like a container ID.
    """
    environ = os.environ if environ is None else environ
    if os.path.exists(os.path.join(root, ".dockerenv")):
        return True
    try:
        with open(os.path.join(root, "proc/self/cgroup")) as f:
            if "docker" in f.read():
                return True
    except OSError:
        pass
    if environ.get("KUBERNETES_SERVICE_HOST") or environ.get("DOCKER_CONTAINER"):
        return True
    hostname = socket.gethostname() if hostname is None else hostname
    return bool(_CONTAINER_ID_RE.match(hostname))


class HostDelegate:
    """
    Performs ``systemctl`` actions on the host.

    Outside a container the command runs directly. Inside one, the host is
    reached through, in order: the host's systemctl mounted at ``/host``,
    ``nsenter`` into PID 1, and a privileged helper container.
    """

    def __init__(
        self,
        service_unit: str = "flannel-recovery.service",
        timeout: int = 120,
        in_container: bool | None = None,
        runtime: DockerRuntime | None = None,
    ):
        self.service_unit = service_unit
        self.timeout = timeout
        self.in_container = is_running_in_container() if in_container is None else in_container
        self.runtime = runtime

    def _run(self, cmd: list[str]) -> bool:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            logger.debug(f"{cmd[0]} unavailable or timed out: {e}")
            return False
        if result.returncode != 0:
            logger.debug(f"{' '.join(cmd)} failed: {result.stderr.strip()}")
            return False
        return True

    def _systemctl_args(self, action: str, service: str) -> list[str]:
        if action == "daemon-reload":
            return ["daemon-reload"]
        return [action, service]

    def run(self, action: str, service: str = "docker") -> bool:
        """
        Run ``systemctl <action> <service>`` on the host.

        Returns:
            True if some mechanism reported success.
        """
        args = self._systemctl_args(action, service)
        if not self.in_container:
            logger.info(f"Running systemctl {' '.join(args)} directly")
            return self._run(["systemctl", *args])

        # Host unit wrapping the action, invoked through the mounted systemctl
        if os.path.exists("/host/bin/systemctl"):
            logger.info(f"Delegating {action} {service} via host systemctl")
            if self._run(["/host/bin/systemctl", "start", self.service_unit]):
                return True

        logger.info(f"Delegating {action} {service} via nsenter into PID 1")
        if self._run(["nsenter", "-m", "-u", "-i", "-n", "-p", "-t", "1", "systemctl", *args]):
            return True

        if self.runtime is not None:
            logger.info(f"Delegating {action} {service} via privileged helper container")
            return self.runtime.run_privileged_helper(f"systemctl {' '.join(args)}")

        logger.error(f"No mechanism available to run systemctl {' '.join(args)} on the host")
        return False
