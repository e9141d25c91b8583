"""
Escalation controller: proportionate, rate-limited self-healing.

The controller holds no state of its own between runs. Each run looks at the
current component statuses, picks the least disruptive applicable level and
escalates one level at a time while levels remain allowed:

    interface -> container -> service

A level is allowed when it is out of cooldown and under its daily attempt
ceiling. The first disallowed level ends the run ("recovery exhausted"); it is
never skipped to reach a higher one.
"""

from __future__ import annotations

import json
from typing import Callable

from flannelregistrar.exceptions import RegistrarError
from flannelregistrar.models.enums import AttemptResult, HealthStatus, RecoveryLevel
from flannelregistrar.models.recovery import ActionOutcome, LevelDecision, RecoveryReport
from flannelregistrar.monitoring.status import StatusStore
from flannelregistrar.recovery.actions import RecoveryActions
from flannelregistrar.recovery.state import DAY_SECONDS, RecoveryStateStore
from flannelregistrar.utils.logger import get_logger
from flannelregistrar.utils.retry import Clock

logger = get_logger(__name__)

RECOVERY_COMPONENT = "general"

# Least disruptive level able to fix a component
COMPONENT_LEVELS = {
    "network.interface": RecoveryLevel.INTERFACE,
    "network.routes": RecoveryLevel.INTERFACE,
    "network.fdb": RecoveryLevel.INTERFACE,
    "network.etcd": RecoveryLevel.CONTAINER,
    "system.container": RecoveryLevel.CONTAINER,
    "system.docker": RecoveryLevel.SERVICE,
}


def minimal_level(components: list[str]) -> RecoveryLevel:
    levels = [COMPONENT_LEVELS.get(c, RecoveryLevel.INTERFACE) for c in components]
    return min(levels, key=lambda level: level.rank, default=RecoveryLevel.INTERFACE)


def _format_history_message(outcome: ActionOutcome) -> str:
    if not outcome.diagnostics:
        return outcome.message
    diagnostics = json.dumps(outcome.diagnostics, default=str, separators=(",", ":"))
    return f"{outcome.message}; diagnostics={diagnostics}"


class EscalationController:
    """
    Chooses and runs remediation actions.

    Args:
        state: Recovery state store (cooldowns, attempts, history).
        actions: Remediation action runner.
        status: Component status table read to decide and verify.
        reevaluate: Re-runs the health checks, refreshing ``status``.
        verify_retries: Number of post-action health re-checks.
        verify_base_delay: Wait before the first re-check; grows by 5s each time.
    """

    def __init__(
        self,
        state: RecoveryStateStore,
        actions: RecoveryActions,
        status: StatusStore,
        reevaluate: Callable[[], HealthStatus] | None = None,
        verify_retries: int = 3,
        verify_base_delay: int = 15,
        clock: Clock | None = None,
        component: str = RECOVERY_COMPONENT,
    ):
        self.state = state
        self.actions = actions
        self.status = status
        self.reevaluate = reevaluate
        self.verify_retries = verify_retries
        self.verify_base_delay = verify_base_delay
        self.clock = clock or Clock()
        self.component = component

    # =========================================================================
    # Decision helpers
    # =========================================================================

    def needs_recovery(self) -> bool:
        """
        Critical system status always needs recovery; degraded only when a
        network or system component is degraded or critical.
        """
        overall = self.status.system_status()
        if overall == HealthStatus.CRITICAL:
            return True
        if overall == HealthStatus.DEGRADED:
            unhealthy = self.status.critical_components() + self.status.degraded_components()
            return any(c.startswith(("network.", "system.")) for c in unhealthy)
        return False

    def target_components(self) -> list[str]:
        return self.status.critical_components() or self.status.degraded_components()

    def level_allowed(self, level: RecoveryLevel) -> tuple[bool, str]:
        action = level.action_name
        remaining = self.state.cooldown_remaining(action)
        if remaining > 0:
            return False, f"in cooldown ({remaining}s remaining)"
        policy = self.state.policies[level]
        count = self.state.count_attempts(self.component, action, DAY_SECONDS)
        if count >= policy.max_attempts:
            return False, f"attempt ceiling reached ({count}/{policy.max_attempts} in 24h)"
        return True, "allowed"

    # =========================================================================
    # Verification
    # =========================================================================

    def _targets_recovered(self, level: RecoveryLevel, targets: list[str]) -> bool:
        if not targets:
            overall = self.status.system_status()
            if overall == HealthStatus.HEALTHY:
                return True
            return level == RecoveryLevel.INTERFACE and overall == HealthStatus.DEGRADED

        for component in targets:
            entry = self.status.get(component)
            if entry is None:
                continue
            if level == RecoveryLevel.INTERFACE:
                if entry.status == HealthStatus.CRITICAL:
                    return False
            elif entry.status != HealthStatus.HEALTHY:
                return False
        return True

    def verify(self, level: RecoveryLevel, targets: list[str]) -> bool:
        """
        Re-check health after an action with growing waits.

        At the interface level components only need to leave the critical
        state; at higher levels they must be healthy.
        """
        if self.reevaluate is None:
            return True
        for attempt in range(self.verify_retries):
            self.clock.sleep(self.verify_base_delay + 5 * attempt)
            self.reevaluate()
            if self._targets_recovered(level, targets):
                logger.info(f"Recovery at {level.value} level verified after {attempt + 1} checks")
                return True
            logger.debug(f"Recovery at {level.value} level not yet effective ({attempt + 1}/{self.verify_retries})")
        return False

    # =========================================================================
    # Execution
    # =========================================================================

    def attempt_level(self, level: RecoveryLevel, targets: list[str] | None = None) -> LevelDecision:
        """
        Attempt one level without escalating.

        Refused when the level is in cooldown or over its ceiling; otherwise
        the action runs, is verified and the outcome recorded.
        """
        targets = list(targets or [])
        allowed, reason = self.level_allowed(level)
        if not allowed:
            logger.warning(f"Recovery level {level.value} refused: {reason}")
            return LevelDecision(level, attempted=False, reason=reason)

        action = level.action_name
        self.state.update_cooldown(action)
        logger.warning(f"Attempting {level.value}-level recovery for {', '.join(targets) or 'system'}")

        try:
            outcome = self.actions.perform(level)
        except RegistrarError as e:
            logger.error(f"{level.value}-level recovery action raised: {e}")
            outcome = ActionOutcome(False, f"Action error: {e}")

        success = outcome.success and self.verify(level, targets)
        if outcome.success and not success:
            outcome.message += "; health did not recover"

        self.state.record_attempt(
            self.component,
            action,
            AttemptResult.SUCCESS if success else AttemptResult.FAILURE,
            _format_history_message(outcome),
        )
        if success:
            logger.info(f"{level.value}-level recovery succeeded: {outcome.message}")
        else:
            logger.error(f"{level.value}-level recovery failed: {outcome.message}")
        return LevelDecision(level, attempted=True, reason=outcome.message, success=success)

    def run(self, start_level: RecoveryLevel | None = None) -> RecoveryReport:
        """Evaluate the current condition and escalate as far as allowed."""
        report = RecoveryReport(needed=self.needs_recovery())
        if not report.needed:
            logger.debug("No recovery needed")
            return report

        report.targets = self.target_components()
        level = start_level or minimal_level(report.targets)
        logger.warning(
            f"Recovery needed for {', '.join(report.targets) or 'system'}, "
            f"starting at {level.value} level"
        )

        levels = [l for l in RecoveryLevel.ordered() if l.rank >= level.rank]
        first = True
        for level in levels:
            if not first:
                allowed, reason = self.level_allowed(level)
                if not allowed:
                    logger.error(f"Recovery exhausted: {level.value} level {reason}")
                    report.decisions.append(LevelDecision(level, attempted=False, reason=reason))
                    report.exhausted = True
                    return report
            first = False

            decision = self.attempt_level(level, report.targets)
            report.decisions.append(decision)
            if decision.attempted:
                report.performed_level = level
            if decision.success:
                report.success = True
                return report

        report.exhausted = True
        logger.error("Recovery exhausted: all escalation levels tried without success")
        return report

    def plan(self) -> RecoveryReport:
        """
        What ``run`` would do now, without acting.

        Lists the starting level and every higher level with whether it is
        currently allowed; nothing is recorded.
        """
        report = RecoveryReport(needed=self.needs_recovery())
        if not report.needed:
            return report
        report.targets = self.target_components()
        start = minimal_level(report.targets)
        for level in RecoveryLevel.ordered():
            if level.rank < start.rank:
                continue
            allowed, reason = self.level_allowed(level)
            report.decisions.append(LevelDecision(level, attempted=False, reason=reason if not allowed else "would attempt"))
        return report

    # =========================================================================
    # Queries
    # =========================================================================

    def history(self, component: str | None = None, limit: int = 20):
        return self.state.history(component, limit)

    def last_recovery_timestamp(self, component: str = RECOVERY_COMPONENT) -> int:
        return self.state.last_recovery_timestamp(component)
