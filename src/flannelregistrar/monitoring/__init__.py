"""Health status tracking and publication."""

from flannelregistrar.monitoring.health import HealthChecker, HealthReporter
from flannelregistrar.monitoring.status import StatusStore

__all__ = ["HealthChecker", "HealthReporter", "StatusStore"]
