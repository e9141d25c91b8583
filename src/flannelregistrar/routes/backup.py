"""Point-in-time route backup used to restore routes after a restart."""

from __future__ import annotations

import json
import os

from flannelregistrar.models.routes import RouteBackupEntry
from flannelregistrar.utils.fileio import atomic_write_text
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.retry import Clock

logger = get_logger(__name__)


class RouteBackupStore:
    """
    JSON array of ``{subnet, via, dev}`` objects.

    Freshness is judged from the file's modification time.
    """

    def __init__(self, path: str, clock: Clock | None = None):
        self.path = path
        self.clock = clock or Clock()

    def save(self, entries: list[RouteBackupEntry]) -> None:
        """
        Replace the backup with ``entries``.

        Raises:
            StateStoreError: If the file cannot be written.
        """
        payload = json.dumps([entry.to_dict() for entry in entries], indent=2)
        atomic_write_text(self.path, payload)
        logger.debug(f"Backed up {len(entries)} routes to {self.path}")

    def age(self) -> float | None:
        """Seconds since the backup was written, None if there is none."""
        try:
            return self.clock.now() - os.path.getmtime(self.path)
        except OSError:
            return None

    def load(self, max_age: float | None = None) -> list[RouteBackupEntry] | None:
        """
        Read the backup.

        Returns None when the file is missing, unreadable or older than
        ``max_age`` seconds.
        """
        age = self.age()
        if age is None:
            return None
        if max_age is not None and age > max_age:
            logger.info(f"Route backup is {int(age)}s old (max {int(max_age)}s), ignoring")
            return None
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Cannot read route backup {self.path}: {e}")
            return None
        if not isinstance(data, list):
            logger.warning(f"Route backup {self.path} is not a JSON array, ignoring")
            return None
        return [
            RouteBackupEntry.from_dict(item)
            for item in data
            if isinstance(item, dict) and item.get("subnet")
        ]
