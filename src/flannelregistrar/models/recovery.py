"""Recovery and health-tracking data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from flannelregistrar.models.enums import AttemptResult, HealthStatus, RecoveryLevel


@dataclass(frozen=True)
class RecoveryAttempt:
    """
    Immutable entry of the recovery history log.

    Serialized as one colon-delimited line:
        timestamp:component:action:result:message

    The message is the last field so it may itself contain colons.
    """

    timestamp: int
    component: str
    action: str
    result: AttemptResult
    message: str = ""

    def to_line(self) -> str:
        message = self.message.replace("\n", " ")
        return (
            f"{self.timestamp}:{self.component}:{self.action}:"
            f"{self.result.value}:{message}"
        )

    @classmethod
    def from_line(cls, line: str) -> RecoveryAttempt | None:
        """Parse a history line, returning None for malformed lines."""
        parts = line.rstrip("\n").split(":", 4)
        if len(parts) < 4:
            return None
        try:
            timestamp = int(parts[0])
            result = AttemptResult(parts[3])
        except ValueError:
            return None
        message = parts[4] if len(parts) == 5 else ""
        return cls(timestamp, parts[1], parts[2], result, message)


@dataclass(frozen=True)
class LevelPolicy:
    """Cooldown and daily attempt ceiling of one recovery level."""

    level: RecoveryLevel
    cooldown: int
    max_attempts: int


@dataclass(frozen=True)
class ComponentStatus:
    """Health of one monitored component."""

    component: str
    status: HealthStatus
    timestamp: int
    message: str = ""

    def to_line(self) -> str:
        message = self.message.replace("\n", " ")
        return f"{self.component}:{self.status.value}:{self.timestamp}:{message}"

    @classmethod
    def from_line(cls, line: str) -> ComponentStatus | None:
        parts = line.rstrip("\n").split(":", 3)
        if len(parts) < 3:
            return None
        try:
            status = HealthStatus(parts[1])
            timestamp = int(parts[2])
        except ValueError:
            return None
        message = parts[3] if len(parts) == 4 else ""
        return cls(parts[0], status, timestamp, message)


@dataclass
class ContainerStatus:
    """Inspected state of the overlay daemon container."""

    container_id: str
    name: str = ""
    state: str = "unknown"
    running: bool = False
    health: str = "none"
    restart_count: int = 0
    uptime: int = 0
    network_mode: str = ""
    net_admin: bool = False

    @property
    def flapping(self) -> bool:
        """Recently (re)started and restarted repeatedly."""
        return self.uptime < 300 and self.restart_count > 2

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.container_id,
            "name": self.name,
            "state": self.state,
            "running": self.running,
            "health": self.health,
            "restarts": self.restart_count,
            "uptime": self.uptime,
            "flapping": self.flapping,
            "network_mode": self.network_mode,
            "net_admin": self.net_admin,
        }


@dataclass
class ActionOutcome:
    """Result of one remediation action with the diagnostics collected after it."""

    success: bool
    message: str
    diagnostics: dict[str, Any] = field(default_factory=dict)


@dataclass
class LevelDecision:
    """What the escalation controller decided for one level."""

    level: RecoveryLevel
    attempted: bool
    reason: str
    success: bool = False


@dataclass
class RecoveryReport:
    """Summary of one escalation run."""

    needed: bool = False
    performed_level: RecoveryLevel | None = None
    success: bool = False
    exhausted: bool = False
    targets: list[str] = field(default_factory=list)
    decisions: list[LevelDecision] = field(default_factory=list)

    @property
    def status(self) -> str:
        if not self.needed:
            return "not-needed"
        if self.success:
            return "recovered"
        if self.exhausted:
            return "recovery exhausted"
        return "failed"
