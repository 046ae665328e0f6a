import json
import threading
import time

import pytest

from clusterupgrade.core import UpgradeHarness
from clusterupgrade.errors import ConvergenceTimeoutError, ProcessLaunchError
from clusterupgrade.models import ProcessState
from clusterupgrade.services.process import ProcessHandle

OLD = "etcd-last-release"
NEW = "etcd"


class FakePopen:
    pid = 1

    def __init__(self):
        self.returncode = None

    def poll(self):
        return self.returncode


class FakeLauncher:
    """In-memory stand-in for the process control surface."""

    def __init__(self, ready_delay=0.0):
        self.ready_delay = ready_delay
        self.events = []
        self.fail_ready = set()
        self.on_spawn = None
        self.lock = threading.Lock()

    def _record(self, *event):
        with self.lock:
            self.events.append(event)

    def spawn(self, cluster_config, node):
        handle = ProcessHandle(node)
        handle.popen = FakePopen()
        handle.state = ProcessState.STARTING
        self._record("spawn", node.index, node.exec_path.rsplit("/", 1)[-1], node.keep_data_dir)
        if self.on_spawn:
            self.on_spawn(node)
        return handle

    def wait_ready(self, cluster_config, handle):
        time.sleep(self.ready_delay * handle.index)
        if handle.index in self.fail_ready:
            handle.state = ProcessState.FAILED
            raise ProcessLaunchError("exited with code 1 before becoming ready", node_index=handle.index)
        handle.state = ProcessState.RUNNING
        self._record("ready", handle.index)

    def stop(self, handle, timeout):
        self._record("stop", handle.index)
        handle.popen.returncode = 0
        handle.state = ProcessState.STOPPED
        return True

    def kill(self, handle):
        self._record("kill", handle.index)
        handle.state = ProcessState.STOPPED


class FakeKeyValueClient:
    def __init__(self):
        self.data = {}
        self.cluster = None
        self.reads = []

    def bind(self, cluster):
        self.cluster = cluster
        return self

    def put(self, key, value):
        self.data[key] = value

    def get(self, key):
        states = [proc.state for proc in self.cluster.procs]
        binaries = [node.exec_path.rsplit("/", 1)[-1] for node in self.cluster.nodes]
        self.reads.append((key, tuple(binaries), tuple(states)))
        return self.data.get(key)


class FakePoller:
    def __init__(self, cluster, converges=True):
        self.cluster = cluster
        self.converges = converges
        self.targets = []

    def await_version(self, target):
        self.targets.append(target)
        upgraded = all(node.exec_path.rsplit("/", 1)[-1] == NEW for node in self.cluster.nodes)
        if self.converges and upgraded:
            return target.version
        raise ConvergenceTimeoutError("not converged", target=target.version, last_version="3.5.0")


def _binaries(tmp_path, release=True):
    paths = {}
    for key, name in (("current_binary", NEW), ("release_binary", OLD), ("etcdctl_binary", "etcdctl")):
        path = tmp_path / "bin" / name
        paths[key] = str(path)
        if name == OLD and not release:
            continue
        path.parent.mkdir(exist_ok=True)
        path.write_text("#!/bin/sh\n", encoding="utf-8")
        path.chmod(0o755)
    return paths


@pytest.fixture
def harness_factory(tmp_path, monkeypatch):
    def build(scenario="rolling", release=True, converges=True, launcher=None, **kwargs):
        harness = UpgradeHarness(
            scenario=scenario,
            work_dir=str(tmp_path / "work"),
            report_file=str(tmp_path / "report.json"),
            target_version="3.6.2",
            convergence_interval=0,
            **_binaries(tmp_path, release=release),
            **kwargs,
        )
        harness.launcher = launcher or FakeLauncher()
        harness.kv = FakeKeyValueClient()
        harness.pollers = []

        def build_poller(cluster):
            poller = FakePoller(cluster, converges=converges)
            harness.pollers.append(poller)
            return poller

        monkeypatch.setattr(harness, "build_kv_client", harness.kv.bind)
        monkeypatch.setattr(harness, "build_poller", build_poller)
        return harness

    return build


def _report(tmp_path):
    return json.loads((tmp_path / "report.json").read_text(encoding="utf-8"))


def test_rolling_upgrade_verifies_every_record_after_each_restart(harness_factory, tmp_path):
    harness = harness_factory()

    assert harness.run() == 0

    result = harness.results[0]
    assert result.status == "passed"
    assert sorted(harness.kv.data) == [f"foo{i}" for i in range(5)]

    mixed_states = sorted({binaries for _, binaries, _ in harness.kv.reads})
    assert mixed_states == [
        (NEW, NEW, NEW),
        (NEW, NEW, OLD),
        (NEW, OLD, OLD),
    ]
    assert len(harness.kv.reads) == 15

    restarts = [event for event in harness.launcher.events if event[0] == "spawn" and event[2] == NEW]
    assert [event[1] for event in restarts] == [0, 1, 2]
    assert all(event[3] is True for event in restarts)

    assert harness.pollers[0].targets[0].version == "3.6.0"
    assert harness.pollers[0].targets[0].max_attempts == 7
    assert _report(tmp_path)["status"] == "passed"


def test_rolling_upgrade_fails_with_key_and_node_when_data_is_lost(harness_factory):
    launcher = FakeLauncher()
    harness = harness_factory(launcher=launcher)

    def lose_data(node):
        if node.index == 1 and node.keep_data_dir:
            harness.kv.data.clear()

    launcher.on_spawn = lose_data

    assert harness.run() == 1

    result = harness.results[0]
    assert result.status == "failed"
    assert result.node_index == 1
    assert result.key == "foo0"
    assert not any(event[0] == "spawn" and event[1] == 2 and event[2] == NEW for event in launcher.events)


def test_rolling_upgrade_reports_last_version_on_convergence_timeout(harness_factory, tmp_path):
    harness = harness_factory(converges=False)

    assert harness.run() == 1

    result = harness.results[0]
    assert result.status == "failed"
    assert result.last_version == "3.5.0"
    steps = _report(tmp_path)["scenarios"]["rolling"]["steps"]
    assert steps[-1]["name"] == "await_cluster_version"
    assert steps[-1]["status"] == "failed"


def test_cluster_is_torn_down_when_scenario_fails(harness_factory):
    launcher = FakeLauncher()
    harness = harness_factory(launcher=launcher, converges=False)

    harness.run()

    stops = [event[1] for event in launcher.events if event[0] == "stop"]
    assert stops[-3:] == [0, 1, 2]


def test_concurrent_restart_verifies_only_after_every_node_is_running(harness_factory):
    launcher = FakeLauncher(ready_delay=0.05)
    harness = harness_factory(scenario="restart", launcher=launcher)

    assert harness.run() == 0

    assert len(harness.kv.data) == 50
    assert len(harness.kv.reads) == 1
    key, binaries, states = harness.kv.reads[0]
    assert key == "foo0"
    assert binaries == (NEW, NEW, NEW)
    assert states == (ProcessState.RUNNING,) * 3

    first_restart = next(
        i for i, event in enumerate(launcher.events) if event[0] == "spawn" and event[2] == NEW
    )
    stops_before = [event[1] for event in launcher.events[:first_restart] if event[0] == "stop"]
    assert stops_before == [0, 1, 2]


def test_concurrent_restart_waits_for_all_tasks_then_fails(harness_factory):
    launcher = FakeLauncher(ready_delay=0.05)
    harness = harness_factory(scenario="restart", launcher=launcher)

    def fail_node_zero_on_new_binary(node):
        if node.keep_data_dir and node.index == 0:
            launcher.fail_ready.add(0)

    launcher.on_spawn = fail_node_zero_on_new_binary

    assert harness.run() == 1

    result = harness.results[0]
    assert result.status == "failed"
    assert result.node_index == 0
    assert ("ready", 2) in launcher.events[-6:]
    assert harness.kv.reads == []


def test_missing_release_binary_skips_scenario(harness_factory, tmp_path):
    harness = harness_factory(scenario="all", release=False)

    assert harness.run() == 0

    assert [result.status for result in harness.results] == ["skipped", "skipped"]
    assert harness.launcher.events == []
    report = _report(tmp_path)
    assert report["status"] == "skipped"
    assert report["scenarios"]["rolling"]["steps"][0]["status"] == "skipped"


def test_all_runs_both_scenarios(harness_factory):
    harness = harness_factory(scenario="all")

    assert harness.run() == 0

    assert [result.name for result in harness.results] == ["rolling", "restart"]


def test_invalid_scenario_fails_run(harness_factory):
    harness = harness_factory(scenario="chaos")

    assert harness.run() == 1
    assert harness.results == []


def test_unexpected_error_is_recorded_and_next_scenario_still_runs(harness_factory, monkeypatch, tmp_path):
    harness = harness_factory(scenario="all")

    class BrokenPoller:
        def await_version(self, _target):
            raise AttributeError("'list' object has no attribute 'get'")

    monkeypatch.setattr(harness, "build_poller", lambda _cluster: BrokenPoller())

    assert harness.run() == 1

    assert [(result.name, result.status) for result in harness.results] == [
        ("rolling", "failed"),
        ("restart", "passed"),
    ]
    assert "no attribute" in harness.results[0].reason
    report = _report(tmp_path)
    assert report["scenarios"]["rolling"]["status"] == "failed"
    assert report["scenarios"]["restart"]["status"] == "passed"


def test_client_tls_settings_reach_cluster_config(harness_factory, tmp_path):
    certs = {}
    for key, name in (("cert_file", "server.crt"), ("key_file", "server.key"), ("trusted_ca_file", "ca.crt")):
        path = tmp_path / name
        path.write_text("pem", encoding="utf-8")
        certs[key] = str(path)
    harness = harness_factory(client_tls=True, **certs)

    assert harness.run() == 0

    cluster_config = harness.cluster_config(harness.ROLLING_SNAPSHOT_COUNT)
    assert cluster_config.client_tls is True
    assert cluster_config.client_scheme == "https"
    assert cluster_config.trusted_ca_file == certs["trusted_ca_file"]


def test_client_tls_without_certificates_fails_setup(harness_factory):
    harness = harness_factory(client_tls=True)

    assert harness.run() == 1

    result = harness.results[0]
    assert result.status == "failed"
    assert "Client TLS is enabled" in result.reason
    assert harness.launcher.events == []
