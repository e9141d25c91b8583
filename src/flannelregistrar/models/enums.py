"""
Enumeration types for flannel-registrar.

This module defines the enumeration types used for health tracking, route
classification, recovery escalation and configuration options.
"""

from enum import Enum


# =============================================================================
# Health-Related Enums
# =============================================================================


class HealthStatus(str, Enum):
    """
    Component and system health status.

    Severity ordering (used when folding component states into one):
        CRITICAL > DEGRADED > HEALTHY

    UNKNOWN is only reported standalone when no data exists.
    """

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"
    UNKNOWN = "unknown"

    @property
    def severity(self) -> int:
        return _HEALTH_SEVERITY[self]


_HEALTH_SEVERITY = {
    HealthStatus.UNKNOWN: -1,
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.CRITICAL: 2,
}


# =============================================================================
# Route-Related Enums
# =============================================================================


class RouteClass(str, Enum):
    """
    How a remote subnet is reached from this host.

    - LOCAL_BRIDGE: subnet lives on a local bridge, scope-link route to it
    - DIRECT: route via the subnet owner's public IP
    - GATEWAY: route via an intermediate gateway host
    - EXTRA_STATIC: operator supplied route, always reapplied
    """

    LOCAL_BRIDGE = "local-bridge"
    DIRECT = "direct"
    GATEWAY = "gateway-indirected"
    EXTRA_STATIC = "extra-static"


# =============================================================================
# Recovery-Related Enums
# =============================================================================


class RecoveryLevel(str, Enum):
    """
    Escalation level of a remediation action.

    Levels are strictly ordered by disruption:
        INTERFACE < CONTAINER < SERVICE

    Each level carries its default cooldown (seconds) and daily attempt
    ceiling. Configuration may override both, see ``LevelPolicy``.
    """

    INTERFACE = "interface"
    CONTAINER = "container"
    SERVICE = "service"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    @property
    def default_cooldown(self) -> int:
        return _LEVEL_DEFAULTS[self][0]

    @property
    def default_max_attempts(self) -> int:
        return _LEVEL_DEFAULTS[self][1]

    @property
    def action_name(self) -> str:
        """Action name under which attempts and cooldowns are recorded."""
        return f"recovery_{self.value}"

    @classmethod
    def ordered(cls) -> list["RecoveryLevel"]:
        return list(_LEVEL_ORDER)

    @classmethod
    def from_action(cls, action: str) -> "RecoveryLevel":
        """
        Resolve the level an action name belongs to.

        Accepts the canonical ``recovery_<level>`` names, the bare level
        values and the action aliases used by the remediation helpers.
        Unknown actions fall back to the container level.
        """
        return _ACTION_LEVELS.get(action, cls.CONTAINER)


_LEVEL_ORDER = (
    RecoveryLevel.INTERFACE,
    RecoveryLevel.CONTAINER,
    RecoveryLevel.SERVICE,
)

# level -> (cooldown seconds, max attempts per day)
_LEVEL_DEFAULTS = {
    RecoveryLevel.INTERFACE: (0, 3),
    RecoveryLevel.CONTAINER: (900, 2),
    RecoveryLevel.SERVICE: (43200, 1),
}

_ACTION_LEVELS: dict[str, RecoveryLevel] = {}
for _level in _LEVEL_ORDER:
    _ACTION_LEVELS[_level.value] = _level
    _ACTION_LEVELS[_level.action_name] = _level
_ACTION_LEVELS.update(
    {
        "interface_cycle": RecoveryLevel.INTERFACE,
        "fdb_repair": RecoveryLevel.INTERFACE,
        "container_restart": RecoveryLevel.CONTAINER,
        "docker_restart": RecoveryLevel.SERVICE,
        "service_restart": RecoveryLevel.SERVICE,
    }
)


class AttemptResult(str, Enum):
    """Outcome recorded for a recovery attempt."""

    SUCCESS = "success"
    FAILURE = "failure"
    ATTEMPTED = "attempted"


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels.

    Levels (from most to least verbose):
        - FULL: Complete trace with detailed stack information
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
