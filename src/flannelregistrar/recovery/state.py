"""
Recovery state store: attempt history, attempt counters, cooldowns and
last-success timestamps.

Files under the recovery state directory:
    recovery_history.log   one ``ts:component:action:result:message`` per line
    recovery_attempts.dat  one ``component:action=count`` per line
    recovery_state.json    {"cooldowns": {action: ts}, "last_success": {component: ts}}

State is loaded once and every mutation rewrites the complete files through
an atomic rename. There is no other writer, so no locking is done.
"""

from __future__ import annotations

import json
import os

from flannelregistrar.exceptions import StateStoreError
from flannelregistrar.models.enums import AttemptResult, RecoveryLevel
from flannelregistrar.models.recovery import LevelPolicy, RecoveryAttempt
from flannelregistrar.utils.fileio import atomic_write_text
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.retry import Clock

logger = get_logger(__name__)

DAY_SECONDS = 86400


def _attempt_key(component: str, action: str) -> str:
    return f"{component}:{action}"


class RecoveryStateStore:
    """
    Durable record of recovery attempts, owned by the escalation controller.

    Write failures are logged at ERROR and remembered in ``last_write_error``;
    the in-memory state stays authoritative for the running process.
    """

    HISTORY_FILE = "recovery_history.log"
    ATTEMPTS_FILE = "recovery_attempts.dat"
    STATE_FILE = "recovery_state.json"

    def __init__(
        self,
        state_dir: str,
        policies: dict[RecoveryLevel, LevelPolicy] | None = None,
        clock: Clock | None = None,
    ):
        self.state_dir = state_dir
        self.policies = policies or {
            level: LevelPolicy(level, level.default_cooldown, level.default_max_attempts)
            for level in RecoveryLevel.ordered()
        }
        self.clock = clock or Clock()

        self._history: list[RecoveryAttempt] = []
        self._attempts: dict[str, int] = {}
        self._cooldowns: dict[str, int] = {}
        self._last_success: dict[str, int] = {}
        self.last_write_error: str | None = None

    @property
    def history_path(self) -> str:
        return os.path.join(self.state_dir, self.HISTORY_FILE)

    @property
    def attempts_path(self) -> str:
        return os.path.join(self.state_dir, self.ATTEMPTS_FILE)

    @property
    def state_path(self) -> str:
        return os.path.join(self.state_dir, self.STATE_FILE)

    def _now(self) -> int:
        return int(self.clock.now())

    # =========================================================================
    # Load / persist
    # =========================================================================

    def load(self) -> None:
        """Load all state files; missing or corrupt files yield empty state."""
        self._history = []
        if os.path.exists(self.history_path):
            with open(self.history_path) as f:
                for line in f:
                    if not line.strip():
                        continue
                    attempt = RecoveryAttempt.from_line(line)
                    if attempt is None:
                        logger.debug(f"Ignoring malformed history line: {line.strip()}")
                        continue
                    self._history.append(attempt)

        self._attempts = {}
        if os.path.exists(self.attempts_path):
            with open(self.attempts_path) as f:
                for line in f:
                    key, sep, count = line.strip().rpartition("=")
                    if not sep or not key:
                        continue
                    try:
                        self._attempts[key] = int(count)
                    except ValueError:
                        logger.debug(f"Ignoring malformed attempt counter: {line.strip()}")

        self._cooldowns = {}
        self._last_success = {}
        if os.path.exists(self.state_path):
            try:
                with open(self.state_path) as f:
                    data = json.load(f)
                self._cooldowns = {k: int(v) for k, v in data.get("cooldowns", {}).items()}
                self._last_success = {k: int(v) for k, v in data.get("last_success", {}).items()}
            except (OSError, ValueError, AttributeError) as e:
                logger.warning(f"Recovery state file {self.state_path} unreadable, starting empty: {e}")

        logger.debug(
            f"Loaded recovery state: {len(self._history)} history entries, "
            f"{len(self._attempts)} counters, {len(self._cooldowns)} cooldowns"
        )

    def _persist(self) -> bool:
        try:
            atomic_write_text(
                self.history_path,
                "".join(f"{a.to_line()}\n" for a in self._history),
            )
            atomic_write_text(
                self.attempts_path,
                "".join(f"{k}={v}\n" for k, v in sorted(self._attempts.items())),
            )
            atomic_write_text(
                self.state_path,
                json.dumps(
                    {"cooldowns": self._cooldowns, "last_success": self._last_success},
                    indent=2,
                    sort_keys=True,
                ),
            )
        except StateStoreError as e:
            self.last_write_error = str(e)
            logger.error(f"Recovery state not persisted, crash recovery data is stale: {e}")
            return False
        self.last_write_error = None
        return True

    # =========================================================================
    # Attempts
    # =========================================================================

    def record_attempt(
        self,
        component: str,
        action: str,
        result: AttemptResult,
        message: str = "",
    ) -> RecoveryAttempt:
        """Append to history, bump the counter and persist everything."""
        attempt = RecoveryAttempt(self._now(), component, action, result, message)
        self._history.append(attempt)
        key = _attempt_key(component, action)
        self._attempts[key] = self._attempts.get(key, 0) + 1
        if result == AttemptResult.SUCCESS:
            self._last_success[component] = attempt.timestamp
        self._persist()
        logger.info(f"Recorded recovery attempt: {component} {action} -> {result.value}")
        return attempt

    def count_attempts(self, component: str, action: str, window: int = DAY_SECONDS) -> int:
        """
        Number of attempts for ``component``/``action``.

        ``window`` 0 returns the all-time counter; otherwise history entries
        within the trailing window are counted.
        """
        if window == 0:
            return self._attempts.get(_attempt_key(component, action), 0)
        cutoff = self._now() - window
        return sum(
            1
            for a in self._history
            if a.component == component and a.action == action and a.timestamp >= cutoff
        )

    # =========================================================================
    # Cooldowns
    # =========================================================================

    def cooldown_for(self, action: str) -> int:
        return self.policies[RecoveryLevel.from_action(action)].cooldown

    def update_cooldown(self, action: str) -> None:
        self._cooldowns[action] = self._now()
        self._persist()
        logger.debug(f"Cooldown started for {action} ({self.cooldown_for(action)}s)")

    def cooldown_remaining(self, action: str) -> int:
        period = self.cooldown_for(action)
        if period <= 0:
            return 0
        started = self._cooldowns.get(action)
        if started is None:
            return 0
        return max(0, period - (self._now() - started))

    def is_in_cooldown(self, action: str) -> bool:
        """
        True while less than the level's cooldown has elapsed since the last
        ``update_cooldown``. Levels with a zero cooldown never cool down.
        """
        return self.cooldown_remaining(action) > 0

    def cooldowns(self) -> dict[str, int]:
        return dict(self._cooldowns)

    # =========================================================================
    # History queries
    # =========================================================================

    def prune_history(self, max_age: int) -> int:
        """Drop history entries older than ``max_age`` seconds."""
        cutoff = self._now() - max_age
        before = len(self._history)
        self._history = [a for a in self._history if a.timestamp >= cutoff]
        removed = before - len(self._history)
        if removed:
            self._persist()
            logger.info(f"Pruned {removed} recovery history entries older than {max_age}s")
        return removed

    def history(self, component: str | None = None, limit: int = 20) -> list[RecoveryAttempt]:
        """Most recent history entries first."""
        entries = [a for a in reversed(self._history) if component is None or a.component == component]
        return entries[:limit] if limit else entries

    def last_success(self, component: str) -> int:
        return self._last_success.get(component, 0)

    def last_recovery_timestamp(self, component: str) -> int:
        for attempt in reversed(self._history):
            if attempt.component == component:
                return attempt.timestamp
        return 0
