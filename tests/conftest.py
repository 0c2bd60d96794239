"""Shared fixtures: an in-memory cluster and a fake clock for polling tests."""

import pytest
from kubernetes import client

from kubechaos.utils.config import ExperimentConfig
from kubechaos.utils.errors import ClusterError


def make_node(name, cpu="4", ready=True):
    return client.V1Node(
        metadata=client.V1ObjectMeta(name=name),
        status=client.V1NodeStatus(
            allocatable={"cpu": cpu, "memory": "16Gi"},
            conditions=[client.V1NodeCondition(type="Ready", status="True" if ready else "False")],
        ),
    )


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeCluster:
    """Scriptable stand-in for KubeCluster.

    `phases` is consumed one entry per phase read, repeating the last entry.
    `readiness` works the same way for node readiness reads. After a
    successful delete the helper pod reads as absent unless `linger` is set.
    With `store_before_error` a failing create still leaves the pod behind.
    """

    def __init__(self, pods=None, nodes=None, phases=None, readiness=None):
        self.pods = pods if pods is not None else [
            {"name": "web-0", "namespace": "shop", "node": "node-a"},
        ]
        self.nodes = nodes if nodes is not None else {"node-a": make_node("node-a")}
        self.phases = list(phases) if phases is not None else ["Running", "Succeeded"]
        self.readiness = list(readiness) if readiness is not None else [True]
        self.list_error = None
        self.create_error = None
        self.delete_error = None
        self.event_error = None
        self.linger = False
        self.store_before_error = False
        self.created = []
        self.deleted = []
        self.events = []
        self.phase_reads = 0
        self.removed = False

    def list_instances(self, namespace, label_selector):
        if self.list_error:
            raise self.list_error
        return list(self.pods)

    def get_node(self, name):
        if name not in self.nodes:
            raise ClusterError(f"Reading node {name} failed: 404 Not Found")
        return self.nodes[name]

    def create_workload(self, namespace, pod):
        if self.create_error:
            if self.store_before_error:
                self.created.append((namespace, pod))
            raise self.create_error
        self.created.append((namespace, pod))
        return pod

    def get_workload_phase(self, namespace, label_selector):
        self.phase_reads += 1
        if self.removed or (self.create_error and not self.created):
            return None
        phase = self.phases.pop(0) if len(self.phases) > 1 else self.phases[0]
        if isinstance(phase, Exception):
            raise phase
        return phase

    def delete_workload(self, namespace, label_selector):
        self.deleted.append((namespace, label_selector))
        if self.delete_error:
            raise self.delete_error
        self.removed = not self.linger

    def get_node_readiness(self, name):
        ready = self.readiness.pop(0) if len(self.readiness) > 1 else self.readiness[0]
        if isinstance(ready, Exception):
            raise ready
        return ready

    def record_event(self, namespace, engine_name, reason, message):
        if self.event_error:
            raise self.event_error
        self.events.append((namespace, engine_name, reason, message))


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def experiment_config():
    return ExperimentConfig(
        app_label="app=web",
        app_namespace="shop",
        chaos_namespace="chaos",
        experiment_name="node-cpu-hog",
        run_id="abc123",
        chaos_uid="uid-1",
        chaos_duration=60,
        timeout=10,
        delay=2,
    )
