"""Per-component health status persisted in ``monitoring/status.dat``."""

from __future__ import annotations

import os

from flannelregistrar.models.enums import HealthStatus
from flannelregistrar.models.recovery import ComponentStatus
from flannelregistrar.utils.fileio import atomic_write_text
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.retry import Clock

logger = get_logger(__name__)


class StatusStore:
    """
    Component status table: ``component:status:timestamp:message`` lines.

    Component names may not contain colons. Every update rewrites the file
    atomically.
    """

    def __init__(self, path: str, clock: Clock | None = None):
        self.path = path
        self.clock = clock or Clock()
        self._statuses: dict[str, ComponentStatus] = {}

    def load(self) -> None:
        self._statuses = {}
        if not os.path.exists(self.path):
            return
        with open(self.path) as f:
            for line in f:
                status = ComponentStatus.from_line(line)
                if status is not None:
                    self._statuses[status.component] = status

    def update(self, component: str, status: HealthStatus, message: str = "") -> ComponentStatus:
        """
        Record the status of a component and persist the table.

        Raises:
            ValueError: If the component name contains a colon.
            StateStoreError: If the file cannot be written.
        """
        if not component or ":" in component:
            raise ValueError(f"Invalid component name: {component!r}")
        entry = ComponentStatus(component, status, int(self.clock.now()), message)
        previous = self._statuses.get(component)
        self._statuses[component] = entry
        atomic_write_text(
            self.path,
            "".join(f"{s.to_line()}\n" for s in self._statuses.values()),
        )
        if previous is None or previous.status != status:
            logger.info(f"Component {component} is {status.value}: {message}")
        return entry

    def get(self, component: str) -> ComponentStatus | None:
        return self._statuses.get(component)

    def all(self) -> list[ComponentStatus]:
        return sorted(self._statuses.values(), key=lambda s: s.component)

    def system_status(self) -> HealthStatus:
        """Most severe component status; UNKNOWN when nothing was recorded."""
        if not self._statuses:
            return HealthStatus.UNKNOWN
        known = [s.status for s in self._statuses.values() if s.status != HealthStatus.UNKNOWN]
        if not known:
            return HealthStatus.UNKNOWN
        return max(known, key=lambda s: s.severity)

    def components_with(self, status: HealthStatus) -> list[str]:
        return sorted(c for c, s in self._statuses.items() if s.status == status)

    def critical_components(self) -> list[str]:
        return self.components_with(HealthStatus.CRITICAL)

    def degraded_components(self) -> list[str]:
        return self.components_with(HealthStatus.DEGRADED)
