"""
Registrar configuration.

A global Config instance that can be modified at runtime. Values are read from
environment variables of the same name by ``load_config_from_env``.
"""

import os
import socket
from dataclasses import dataclass, fields

from flannelregistrar.models.enums import LogLevel, RecoveryLevel
from flannelregistrar.models.recovery import LevelPolicy


@dataclass
class RegistrarConfig:
    """flannel-registrar configuration."""

    # Etcd Configuration
    ETCD_ENDPOINT: str = "http://127.0.0.1:2379"
    ETCD_TIMEOUT: float = 5.0
    ETCD_RETRY_COUNT: int = 3
    ETCD_RETRY_DELAY: float = 2.0
    FLANNEL_PREFIX: str = "/coreos.com/network"
    FLANNEL_CONFIG_PREFIX: str = "/flannel/network"

    # Host Identity
    FLANNELD_PUBLIC_IP: str = ""
    HOSTNAME: str = ""

    # Route Configuration
    HOST_GATEWAY_MAP: str = ""  # "host1:gw1,10.0.0.0/24:gw2"
    FLANNEL_ROUTES_EXTRA: str = ""  # "subnet:gateway[:interface],..."
    MANAGE_FLANNEL_ROUTES: bool = False
    FLANNEL_NETWORK_PREFIX: str = "10.5"
    FLANNEL_INTERFACE: str = "flannel.1"
    ROUTES_UPDATE_INTERVAL: int = 120
    ROUTE_BACKUP_MAX_AGE: int = 3600
    ROUTE_BACKUP_PREFIXES: str = "10."  # destinations captured in the route backup
    TUNNEL_INTERFACE_PREFIXES: str = "wg"  # alternate transports for gateway detection
    TUNNEL_NETWORK_PREFIX: str = "172.24."

    # Path Configuration
    COMMON_STATE_DIR: str = "/var/run/flannel-registrar"

    # Recovery Configuration
    RECOVERY_INTERFACE_COOLDOWN: int = 0
    RECOVERY_CONTAINER_COOLDOWN: int = 900
    RECOVERY_SERVICE_COOLDOWN: int = 43200
    RECOVERY_MAX_INTERFACE_ATTEMPTS: int = 3
    RECOVERY_MAX_CONTAINER_ATTEMPTS: int = 2
    RECOVERY_MAX_SERVICE_ATTEMPTS: int = 1
    RECOVERY_HISTORY_RETENTION: int = 2592000  # 30 days
    RECOVERY_VERIFY_RETRIES: int = 3
    RECOVERY_VERIFY_BASE_DELAY: int = 15

    # Remediation Action Configuration
    FLANNEL_CONTAINER_NAME: str = "flannel"
    FLANNEL_MTU: int = 1370
    DOCKER_RESTART_TIMEOUT: int = 60
    CONTAINER_HEALTH_TIMEOUT: int = 30
    HOST_SYSTEMD_SERVICE: str = "flannel-recovery.service"
    HOST_ACTION_TIMEOUT: int = 120

    # Loop Configuration
    INTERVAL: int = 60
    MONITORING_INTERVAL: int = 300
    MONITORING_STATUS_ENDPOINT: str = ""

    # Logging Configuration
    LOG_LEVEL: LogLevel = LogLevel.INFO

    def get_hostname(self) -> str:
        """Get this host's name."""
        if self.HOSTNAME:
            return self.HOSTNAME
        return socket.gethostname()

    def get_subnets_prefix(self) -> str:
        """Etcd prefix under which flannel stores subnet leases."""
        return f"{self.FLANNEL_PREFIX.rstrip('/')}/subnets/"

    def get_health_key(self) -> str:
        """Etcd key for this host's health document."""
        return f"{self.FLANNEL_CONFIG_PREFIX.rstrip('/')}/_health/{self.get_hostname()}"

    def get_tunnel_prefixes(self) -> list[str]:
        return _split_list(self.TUNNEL_INTERFACE_PREFIXES)

    def get_backup_prefixes(self) -> list[str]:
        return _split_list(self.ROUTE_BACKUP_PREFIXES)

    # -------------------------------------------------------------------------
    # Persisted state layout
    # -------------------------------------------------------------------------

    def get_routes_dir(self) -> str:
        return os.path.join(self.COMMON_STATE_DIR, "routes")

    def get_route_backup_path(self) -> str:
        return os.path.join(self.get_routes_dir(), "routes_backup.json")

    def get_recovery_dir(self) -> str:
        return os.path.join(self.COMMON_STATE_DIR, "recovery")

    def get_monitoring_dir(self) -> str:
        return os.path.join(self.COMMON_STATE_DIR, "monitoring")

    def get_status_file_path(self) -> str:
        return os.path.join(self.get_monitoring_dir(), "status.dat")

    def get_health_file_path(self) -> str:
        return os.path.join(self.get_monitoring_dir(), "health.json")

    # -------------------------------------------------------------------------
    # Recovery policy
    # -------------------------------------------------------------------------

    def level_policy(self, level: RecoveryLevel) -> LevelPolicy:
        """Cooldown and attempt ceiling configured for a recovery level."""
        match level:
            case RecoveryLevel.INTERFACE:
                return LevelPolicy(
                    level,
                    self.RECOVERY_INTERFACE_COOLDOWN,
                    self.RECOVERY_MAX_INTERFACE_ATTEMPTS,
                )
            case RecoveryLevel.CONTAINER:
                return LevelPolicy(
                    level,
                    self.RECOVERY_CONTAINER_COOLDOWN,
                    self.RECOVERY_MAX_CONTAINER_ATTEMPTS,
                )
            case RecoveryLevel.SERVICE:
                return LevelPolicy(
                    level,
                    self.RECOVERY_SERVICE_COOLDOWN,
                    self.RECOVERY_MAX_SERVICE_ATTEMPTS,
                )

    def level_policies(self) -> dict[RecoveryLevel, LevelPolicy]:
        return {level: self.level_policy(level) for level in RecoveryLevel.ordered()}


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _coerce(raw: str, default):
    """Convert an environment string to the type of the field's default."""
    if isinstance(default, bool):
        value = raw.strip().lower()
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
        raise ValueError(f"not a boolean: {raw!r}")
    if isinstance(default, LogLevel):
        return LogLevel(raw.strip().lower())
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def load_config_from_env(
    target: RegistrarConfig | None = None,
    environ: dict[str, str] | None = None,
) -> RegistrarConfig:
    """
    Populate a config from environment variables.

    Args:
        target: Config to update in place (defaults to the global instance).
        environ: Mapping to read from (defaults to ``os.environ``).

    Returns:
        The updated config.

    Raises:
        ValueError: If a variable cannot be converted to its field type.
    """
    target = config if target is None else target
    environ = os.environ if environ is None else environ

    for f in fields(target):
        if f.name not in environ:
            continue
        # HOSTNAME is exported by most shells; only honour it when explicitly
        # prefixed for the registrar.
        if f.name == "HOSTNAME":
            continue
        current = getattr(target, f.name)
        try:
            setattr(target, f.name, _coerce(environ[f.name], current))
        except ValueError as e:
            raise ValueError(f"Invalid value for {f.name}: {e}") from e

    if "REGISTRAR_HOSTNAME" in environ:
        target.HOSTNAME = environ["REGISTRAR_HOSTNAME"]

    return target


# Global config instance
config = RegistrarConfig()
