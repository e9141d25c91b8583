"""Remediation actions and host delegation."""

import dataclasses
import subprocess

import pytest
from conftest import FakeHostDelegate, FakeRouteTable, FakeRuntime, healthy_container, overlay_link

from flannelregistrar.models.enums import RecoveryLevel
from flannelregistrar.network.fdb import FdbSyncResult
from flannelregistrar.recovery.actions import RecoveryActions
from flannelregistrar.recovery.host import HostDelegate, is_running_in_container

CID = "f1a2b3c4d5e6"


@pytest.fixture
def runtime():
    return FakeRuntime({CID: healthy_container(CID)}, flannel_id=CID)


def make_actions(table, runtime, clock, host=None, fdb_sync=None):
    return RecoveryActions(
        table,
        runtime,
        host or FakeHostDelegate(),
        fdb_sync=fdb_sync,
        clock=clock,
    )


class TestInterfaceCycle:
    def test_cycles_and_restores_mtu(self, runtime, clock):
        table = FakeRouteTable(links=[overlay_link(mtu=1370)])
        table.mtu_after_up = 1500
        synced = []

        def fdb_sync():
            synced.append(True)
            return FdbSyncResult(added=2)

        outcome = make_actions(table, runtime, clock, fdb_sync=fdb_sync).cycle_interface()

        assert outcome.success
        assert table.mutations == [
            ("link", "flannel.1", "down"),
            ("link", "flannel.1", "up"),
            ("mtu", "flannel.1", 1370),
        ]
        assert clock.sleeps == [2]
        assert synced == [True]
        assert "FDB 2 added" in outcome.message
        assert outcome.diagnostics["overlay_interface"]["mtu"] == 1370

    def test_mtu_left_alone_when_unchanged(self, runtime, clock):
        table = FakeRouteTable(links=[overlay_link(mtu=1450)])

        outcome = make_actions(table, runtime, clock).cycle_interface()

        assert outcome.success
        assert not any(m[0] == "mtu" for m in table.mutations)

    def test_missing_interface(self, runtime, clock):
        table = FakeRouteTable()

        outcome = make_actions(table, runtime, clock).perform(RecoveryLevel.INTERFACE)

        assert not outcome.success
        assert "does not exist" in outcome.message
        assert outcome.diagnostics["overlay_interface"] == "missing"
        assert table.mutations == []


class TestContainerRestart:
    def test_restart_until_healthy(self, runtime, clock):
        table = FakeRouteTable(links=[overlay_link()])

        outcome = make_actions(table, runtime, clock).perform(RecoveryLevel.CONTAINER)

        assert outcome.success
        assert runtime.restarts == [CID]
        assert set(outcome.diagnostics) == {"before", "after"}
        assert outcome.diagnostics["after"]["container"]["id"] == CID

    def test_waits_for_container_to_come_back(self, runtime, clock):
        table = FakeRouteTable(links=[overlay_link()])
        runtime.containers[CID] = dataclasses.replace(runtime.containers[CID], running=False, state="restarting")

        def come_back_later(rt, cid):
            clock_at_restart = clock.now()

            def inspect(container_id):
                status = healthy_container(container_id)
                if clock.now() - clock_at_restart < 12:
                    return dataclasses.replace(status, running=False, state="restarting")
                return status

            rt.inspect = inspect

        runtime.on_restart = come_back_later

        outcome = make_actions(table, runtime, clock).restart_container()

        assert outcome.success
        assert clock.sleeps == [5, 5, 5]

    def test_container_not_found(self, clock):
        runtime = FakeRuntime()

        outcome = make_actions(FakeRouteTable(), runtime, clock).restart_container()

        assert not outcome.success
        assert outcome.message == "Flannel container not found"
        assert runtime.restarts == []

    def test_unhealthy_after_timeout(self, runtime, clock):
        table = FakeRouteTable(links=[overlay_link()])

        def turn_unhealthy(rt, cid):
            rt.containers[cid] = dataclasses.replace(rt.containers[cid], health="unhealthy")

        runtime.on_restart = turn_unhealthy

        outcome = make_actions(table, runtime, clock).restart_container()

        assert not outcome.success
        assert outcome.message == "Container unhealthy after 30s: health status unhealthy"
        assert outcome.diagnostics["after"]["container"]["health"] == "unhealthy"

    def test_flapping_container_is_unhealthy(self, runtime, clock):
        table = FakeRouteTable(links=[overlay_link()])
        runtime.containers[CID] = dataclasses.replace(runtime.containers[CID], restart_count=5, uptime=20)

        healthy, reason = make_actions(table, runtime, clock).check_container_health(CID)

        assert not healthy
        assert reason.startswith("flapping")

    def test_missing_interface_or_exec_failure_is_unhealthy(self, runtime, clock):
        actions = make_actions(FakeRouteTable(), runtime, clock)
        assert actions.check_container_health(CID) == (False, "interface flannel.1 missing")

        actions.table = FakeRouteTable(links=[overlay_link()])
        runtime.exec_ok = False
        assert actions.check_container_health(CID) == (False, "exec check failed")


class TestServiceRestart:
    def test_restart_with_containers_back(self, runtime, clock):
        runtime.running = ["a", "b", "c", "d"]
        host = FakeHostDelegate(hook=lambda: setattr(runtime, "running", ["a", "b", "c"]))

        outcome = make_actions(FakeRouteTable(), runtime, clock, host=host).perform(RecoveryLevel.SERVICE)

        assert outcome.success
        assert host.calls == [("restart", "docker")]
        assert outcome.message == "Docker restarted, 3/4 containers running"
        assert outcome.diagnostics["running_containers"] == 3

    def test_host_cannot_restart(self, runtime, clock):
        outcome = make_actions(FakeRouteTable(), runtime, clock, host=FakeHostDelegate(result=False)).restart_service()

        assert not outcome.success
        assert outcome.message == "Docker restart could not be issued"

    def test_engine_never_answers(self, runtime, clock):
        runtime.responding = False

        outcome = make_actions(FakeRouteTable(), runtime, clock).restart_service()

        assert not outcome.success
        assert outcome.message == "Docker not reachable 120s after restart"

    def test_few_containers_back_only_warns(self, runtime, clock):
        runtime.running = ["a", "b", "c", "d"]
        host = FakeHostDelegate(hook=lambda: setattr(runtime, "running", ["a"]))

        outcome = make_actions(FakeRouteTable(), runtime, clock, host=host).restart_service()

        assert outcome.success
        assert outcome.message.endswith("(fewer than half resurfaced)")
        assert sum(clock.sleeps) >= 120


class TestHostDelegate:
    def test_container_detection(self, tmp_path):
        assert not is_running_in_container(environ={}, hostname="node1", root=str(tmp_path))
        assert is_running_in_container(environ={"DOCKER_CONTAINER": "1"}, hostname="node1", root=str(tmp_path))
        assert is_running_in_container(environ={}, hostname="0123456789ab", root=str(tmp_path))
        (tmp_path / ".dockerenv").write_text("")
        assert is_running_in_container(environ={}, hostname="node1", root=str(tmp_path))

    def test_cgroup_detection(self, tmp_path):
        (tmp_path / "proc" / "self").mkdir(parents=True)
        (tmp_path / "proc" / "self" / "cgroup").write_text("0::/docker/0123456789ab\n")
        assert is_running_in_container(environ={}, hostname="node1", root=str(tmp_path))

    def test_direct_systemctl(self, monkeypatch):
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            return subprocess.CompletedProcess(cmd, 0, "", "")

        monkeypatch.setattr(subprocess, "run", fake_run)

        assert HostDelegate(in_container=False).run("restart", "docker")
        assert calls == [["systemctl", "restart", "docker"]]

    def test_nsenter_used_inside_container(self, monkeypatch):
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            return subprocess.CompletedProcess(cmd, 0 if cmd[0] == "nsenter" else 1, "", "denied")

        monkeypatch.setattr(subprocess, "run", fake_run)

        assert HostDelegate(in_container=True).run("restart", "docker")
        assert calls[-1][:2] == ["nsenter", "-m"]
        assert calls[-1][-3:] == ["systemctl", "restart", "docker"]

    def test_no_mechanism_available(self, monkeypatch):
        def missing(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(subprocess, "run", missing)

        assert not HostDelegate(in_container=True).run("restart", "docker")
