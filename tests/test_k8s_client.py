"""Tests for KubeCluster against a mocked CoreV1 API."""

from unittest import mock

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError

from conftest import make_node
from kubechaos.utils import k8s_client
from kubechaos.utils.errors import ClusterError
from kubechaos.utils.k8s_client import KubeCluster, load_api_client


def make_pod(name, node, phase="Running"):
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=name, namespace="shop"),
        spec=client.V1PodSpec(node_name=node, containers=[client.V1Container(name="web")]),
        status=client.V1PodStatus(phase=phase),
    )


@pytest.fixture
def core_v1():
    return mock.Mock()


@pytest.fixture
def kube(core_v1):
    cluster = KubeCluster(mock.Mock())
    cluster.core_v1 = core_v1
    return cluster


class TestKubeCluster:
    def test_list_instances_only_running_pods(self, kube, core_v1) -> None:
        core_v1.list_namespaced_pod.return_value = client.V1PodList(
            items=[make_pod("web-0", "node-a"), make_pod("web-1", "node-b")]
        )

        pods = kube.list_instances("shop", "app=web")

        assert pods == [
            {"name": "web-0", "namespace": "shop", "node": "node-a"},
            {"name": "web-1", "namespace": "shop", "node": "node-b"},
        ]
        core_v1.list_namespaced_pod.assert_called_once_with(
            "shop", label_selector="app=web", field_selector="status.phase=Running"
        )

    def test_api_exception_becomes_cluster_error(self, kube, core_v1) -> None:
        core_v1.read_node.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(ClusterError, match="404 Not Found"):
            kube.get_node("node-z")

    def test_transport_error_becomes_cluster_error(self, kube, core_v1) -> None:
        core_v1.list_namespaced_pod.side_effect = MaxRetryError(None, "/api/v1/namespaces/shop/pods")

        with pytest.raises(ClusterError):
            kube.list_instances("shop", "app=web")

    def test_workload_phase(self, kube, core_v1) -> None:
        core_v1.list_namespaced_pod.return_value = client.V1PodList(items=[make_pod("hog", "node-a", "Pending")])

        assert kube.get_workload_phase("chaos", "name=hog") == "Pending"

    def test_workload_phase_without_pod(self, kube, core_v1) -> None:
        core_v1.list_namespaced_pod.return_value = client.V1PodList(items=[])

        assert kube.get_workload_phase("chaos", "name=hog") is None

    def test_create_workload(self, kube, core_v1) -> None:
        pod = make_pod("hog", "node-a")

        kube.create_workload("chaos", pod)

        core_v1.create_namespaced_pod.assert_called_once_with("chaos", body=pod)

    def test_delete_workload_by_label(self, kube, core_v1) -> None:
        kube.delete_workload("chaos", "name=hog")

        core_v1.delete_collection_namespaced_pod.assert_called_once_with(
            "chaos", label_selector="name=hog", grace_period_seconds=0, propagation_policy="Background"
        )

    @pytest.mark.parametrize("ready", [True, False])
    def test_node_readiness(self, kube, core_v1, ready) -> None:
        core_v1.read_node.return_value = make_node("node-a", ready=ready)

        assert kube.get_node_readiness("node-a") is ready

    def test_node_without_conditions_is_not_ready(self, kube, core_v1) -> None:
        node = make_node("node-a")
        node.status.conditions = None
        core_v1.read_node.return_value = node

        assert kube.get_node_readiness("node-a") is False

    def test_node_without_status_is_not_ready(self, kube, core_v1) -> None:
        node = make_node("node-a")
        node.status = None
        core_v1.read_node.return_value = node

        assert kube.get_node_readiness("node-a") is False

    def test_record_event(self, kube, core_v1) -> None:
        kube.record_event("chaos", "web-chaos", "ChaosInject", "Injecting node-cpu-hog chaos on node-a node")

        namespace = core_v1.create_namespaced_event.call_args.args[0]
        event = core_v1.create_namespaced_event.call_args.kwargs["body"]
        assert namespace == "chaos"
        assert event.reason == "ChaosInject"
        assert event.involved_object.kind == "ChaosEngine"
        assert event.involved_object.name == "web-chaos"
        assert event.message == "Injecting node-cpu-hog chaos on node-a node"


class TestLoadApiClient:
    def test_uses_kubeconfig_file(self, tmp_path) -> None:
        kube_config = tmp_path / "config"
        kube_config.write_text("")

        with mock.patch.object(k8s_client.config, "load_kube_config") as load_kube, \
                mock.patch.object(k8s_client.config, "load_incluster_config") as load_incluster:
            load_api_client(str(kube_config))

        load_kube.assert_called_once_with(config_file=str(kube_config))
        load_incluster.assert_not_called()

    def test_falls_back_to_incluster(self, tmp_path) -> None:
        with mock.patch.object(k8s_client.config, "load_kube_config") as load_kube, \
                mock.patch.object(k8s_client.config, "load_incluster_config") as load_incluster:
            load_api_client(str(tmp_path / "missing"))

        load_kube.assert_not_called()
        load_incluster.assert_called_once()
