"""Escalation controller decisions, escalation and rate limiting."""

import pytest

from flannelregistrar.exceptions import RecoveryError
from flannelregistrar.models.enums import AttemptResult, HealthStatus, RecoveryLevel
from flannelregistrar.models.recovery import ActionOutcome
from flannelregistrar.monitoring.status import StatusStore
from flannelregistrar.recovery.controller import EscalationController, minimal_level
from flannelregistrar.recovery.state import RecoveryStateStore


class ScriptedActions:
    """Remediation actions that succeed unless scripted otherwise."""

    def __init__(self, outcomes=None, error_levels=()):
        self.outcomes = dict(outcomes or {})
        self.error_levels = set(error_levels)
        self.performed: list[RecoveryLevel] = []

    def perform(self, level):
        self.performed.append(level)
        if level in self.error_levels:
            raise RecoveryError(f"{level.value} exploded")
        return self.outcomes.get(level, ActionOutcome(True, f"{level.value} action done"))


class Environment:
    """Status table whose components heal once a given level has acted."""

    def __init__(self, tmp_path, clock, heal_at=RecoveryLevel.INTERFACE, healed_status=HealthStatus.HEALTHY):
        self.clock = clock
        self.status = StatusStore(str(tmp_path / "monitoring" / "status.dat"), clock)
        self.state = RecoveryStateStore(str(tmp_path / "recovery"), clock=clock)
        self.state.load()
        self.actions = ScriptedActions()
        self.heal_at = heal_at
        self.healed_status = healed_status
        self.broken: list[str] = []
        self.reevaluations = 0

    def break_component(self, component, status=HealthStatus.CRITICAL):
        self.broken.append(component)
        self.status.update(component, status, "broken")

    def reevaluate(self):
        self.reevaluations += 1
        if self.heal_at is None or not self.actions.performed:
            return self.status.system_status()
        if self.actions.performed[-1].rank >= self.heal_at.rank:
            for component in self.broken:
                self.status.update(component, self.healed_status, "fixed")
        return self.status.system_status()

    def controller(self):
        return EscalationController(
            self.state,
            self.actions,
            self.status,
            reevaluate=self.reevaluate,
            clock=self.clock,
        )


@pytest.fixture
def env(tmp_path, clock):
    return Environment(tmp_path, clock)


class TestNeedsRecovery:
    def test_no_data_needs_nothing(self, env):
        assert not env.controller().needs_recovery()

    def test_healthy_needs_nothing(self, env):
        env.status.update("network.interface", HealthStatus.HEALTHY)
        assert not env.controller().needs_recovery()

    def test_critical_always_needs_recovery(self, env):
        env.status.update("network.interface", HealthStatus.CRITICAL)
        assert env.controller().needs_recovery()

    def test_degraded_needs_recovery_only_for_network_or_system(self, env):
        env.status.update("app.dashboard", HealthStatus.DEGRADED)
        assert not env.controller().needs_recovery()
        env.status.update("network.routes", HealthStatus.DEGRADED)
        assert env.controller().needs_recovery()


def test_minimal_level():
    assert minimal_level([]) == RecoveryLevel.INTERFACE
    assert minimal_level(["system.docker"]) == RecoveryLevel.SERVICE
    assert minimal_level(["system.docker", "system.container"]) == RecoveryLevel.CONTAINER
    assert minimal_level(["network.routes", "system.docker"]) == RecoveryLevel.INTERFACE
    assert minimal_level(["something.else"]) == RecoveryLevel.INTERFACE


class TestSingleLevel:
    def test_second_container_attempt_refused_in_cooldown(self, env, clock):
        env.break_component("system.container")
        controller = env.controller()

        first = controller.attempt_level(RecoveryLevel.CONTAINER, ["system.container"])
        assert first.attempted and first.success

        clock.advance(5 * 60)
        env.status.update("system.container", HealthStatus.CRITICAL, "broken again")
        second = controller.attempt_level(RecoveryLevel.CONTAINER, ["system.container"])

        assert not second.attempted
        assert "in cooldown" in second.reason
        assert env.actions.performed == [RecoveryLevel.CONTAINER]
        [last] = controller.history(limit=1)
        assert last.action == "recovery_container"
        assert last.result == AttemptResult.SUCCESS

    def test_allowed_again_after_cooldown(self, env, clock):
        env.break_component("system.container")
        controller = env.controller()
        controller.attempt_level(RecoveryLevel.CONTAINER)

        clock.advance(900)
        allowed, reason = controller.level_allowed(RecoveryLevel.CONTAINER)
        assert allowed, reason

    def test_ceiling_counts_last_24_hours(self, env, clock):
        controller = env.controller()
        for _ in range(2):
            env.state.record_attempt("general", "recovery_container", AttemptResult.FAILURE)

        allowed, reason = controller.level_allowed(RecoveryLevel.CONTAINER)
        assert not allowed
        assert reason == "attempt ceiling reached (2/2 in 24h)"

        clock.advance(86401)
        assert controller.level_allowed(RecoveryLevel.CONTAINER)[0]

    def test_action_error_recorded_as_failure(self, env):
        env.break_component("network.interface")
        env.actions.error_levels = {RecoveryLevel.INTERFACE}

        decision = env.controller().attempt_level(RecoveryLevel.INTERFACE)

        assert decision.attempted and not decision.success
        [attempt] = env.state.history()
        assert attempt.result == AttemptResult.FAILURE
        assert "interface exploded" in attempt.message

    def test_diagnostics_appended_to_history(self, env):
        env.break_component("system.container")
        env.actions.outcomes[RecoveryLevel.CONTAINER] = ActionOutcome(
            False, "container restart failed", {"container": {"id": "f1a2", "state": "exited"}}
        )

        env.controller().attempt_level(RecoveryLevel.CONTAINER)

        [attempt] = env.state.history()
        assert attempt.message.startswith("container restart failed; diagnostics=")
        assert '"state":"exited"' in attempt.message

    def test_unverified_success_is_failure(self, tmp_path, clock):
        env = Environment(tmp_path, clock, heal_at=None)
        env.break_component("system.container")

        decision = env.controller().attempt_level(RecoveryLevel.CONTAINER, ["system.container"])

        assert not decision.success
        assert decision.reason.endswith("; health did not recover")
        assert env.reevaluations == 3
        assert clock.sleeps == [15, 20, 25]


class TestEscalation:
    def test_interface_recovery_only_needs_to_leave_critical(self, tmp_path, clock):
        env = Environment(tmp_path, clock, healed_status=HealthStatus.DEGRADED)
        env.break_component("network.interface")

        report = env.controller().run()

        assert report.success
        assert report.performed_level == RecoveryLevel.INTERFACE
        assert env.actions.performed == [RecoveryLevel.INTERFACE]
        assert report.status == "recovered"

    def test_escalates_to_container_when_interface_fails(self, tmp_path, clock):
        env = Environment(tmp_path, clock, heal_at=RecoveryLevel.CONTAINER)
        env.break_component("network.interface")

        report = env.controller().run()

        assert report.success
        assert env.actions.performed == [RecoveryLevel.INTERFACE, RecoveryLevel.CONTAINER]
        assert report.performed_level == RecoveryLevel.CONTAINER
        assert clock.sleeps == [15, 20, 25, 15]
        results = [(a.action, a.result) for a in env.state.history()]
        assert results == [
            ("recovery_container", AttemptResult.SUCCESS),
            ("recovery_interface", AttemptResult.FAILURE),
        ]

    def test_interface_ceiling_escalates_to_container(self, env):
        env.break_component("network.interface")
        for _ in range(3):
            env.state.record_attempt("general", "recovery_interface", AttemptResult.FAILURE)

        report = env.controller().run()

        assert [d.attempted for d in report.decisions] == [False, True]
        assert "attempt ceiling reached" in report.decisions[0].reason
        assert env.actions.performed == [RecoveryLevel.CONTAINER]
        assert report.success

    def test_exhausted_when_next_level_in_cooldown(self, tmp_path, clock):
        env = Environment(tmp_path, clock, heal_at=None)
        env.break_component("network.interface")
        env.state.update_cooldown("recovery_container")

        report = env.controller().run()

        assert report.exhausted
        assert report.status == "recovery exhausted"
        assert env.actions.performed == [RecoveryLevel.INTERFACE]
        assert [(d.level, d.attempted) for d in report.decisions] == [
            (RecoveryLevel.INTERFACE, True),
            (RecoveryLevel.CONTAINER, False),
        ]

    def test_all_levels_fail(self, tmp_path, clock):
        env = Environment(tmp_path, clock, heal_at=None)
        env.break_component("network.interface")

        report = env.controller().run()

        assert report.exhausted and not report.success
        assert env.actions.performed == RecoveryLevel.ordered()
        assert report.performed_level == RecoveryLevel.SERVICE

    def test_docker_failure_starts_at_service(self, env):
        env.break_component("system.docker")

        report = env.controller().run()

        assert env.actions.performed == [RecoveryLevel.SERVICE]
        assert report.success

    def test_healthy_system_does_nothing(self, env):
        env.status.update("network.interface", HealthStatus.HEALTHY)

        report = env.controller().run()

        assert not report.needed
        assert report.status == "not-needed"
        assert env.actions.performed == []


def test_plan_reports_without_acting(env):
    env.break_component("network.interface")
    env.state.update_cooldown("recovery_container")

    report = env.controller().plan()

    assert env.actions.performed == []
    assert env.state.history() == []
    assert [(d.level, d.reason.split(" (")[0]) for d in report.decisions] == [
        (RecoveryLevel.INTERFACE, "would attempt"),
        (RecoveryLevel.CONTAINER, "in cooldown"),
        (RecoveryLevel.SERVICE, "would attempt"),
    ]
