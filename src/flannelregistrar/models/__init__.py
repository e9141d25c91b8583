"""Data models for flannel-registrar."""

from flannelregistrar.models.enums import (
    AttemptResult,
    HealthStatus,
    LogLevel,
    RecoveryLevel,
    RouteClass,
)
from flannelregistrar.models.network import FdbEntry, LinkInfo, RouteEntry
from flannelregistrar.models.recovery import (
    ActionOutcome,
    ComponentStatus,
    ContainerStatus,
    LevelDecision,
    LevelPolicy,
    RecoveryAttempt,
    RecoveryReport,
)
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

__all__ = [
    "ActionOutcome",
    "AttemptResult",
    "ComponentStatus",
    "ContainerStatus",
    "DesiredRoute",
    "ExtraRoute",
    "FdbEntry",
    "GatewayMapping",
    "HealthStatus",
    "LevelDecision",
    "LevelPolicy",
    "LinkInfo",
    "LogLevel",
    "ReconcileResult",
    "RecoveryAttempt",
    "RecoveryLevel",
    "RecoveryReport",
    "RestoreResult",
    "RouteBackupEntry",
    "RouteClass",
    "RouteEntry",
    "SubnetRecord",
    "VerifyResult",
]
