import os
import logging
from datetime import datetime, timezone

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from kubechaos.utils.errors import ClusterError

logger = logging.getLogger(__name__)

def load_api_client(kube_config=None):
    #Prefer an explicit kubeconfig, fall back to the pod's service account
    kube_config = os.path.expanduser(kube_config) if kube_config else None
    if kube_config and os.path.exists(kube_config):
        config.load_kube_config(config_file=kube_config)
        logger.debug(f"Loaded kubeconfig from {kube_config}")
    else:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    return client.ApiClient()


class KubeCluster:
    """Cluster operations used by the experiments, backed by the CoreV1 API.

    Every failed call is re-raised as ClusterError so callers handle a single
    exception type whatever the transport did.
    """

    def __init__(self, api_client):
        self.core_v1 = client.CoreV1Api(api_client)

    def _call(self, action, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ApiException as e:
            raise ClusterError(f"{action} failed: {e.status} {e.reason}") from e
        except HTTPError as e:
            raise ClusterError(f"{action} failed: {e}") from e

    def list_instances(self, namespace, label_selector):
        pods = self._call(
            f"Listing pods in {namespace} with {label_selector}",
            self.core_v1.list_namespaced_pod,
            namespace,
            label_selector=label_selector,
            field_selector="status.phase=Running"
        )
        return [
            {
                'name': pod.metadata.name,
                'namespace': pod.metadata.namespace,
                'node': pod.spec.node_name
            }
            for pod in pods.items
        ]

    def get_node(self, name):
        return self._call(f"Reading node {name}", self.core_v1.read_node, name)

    def create_workload(self, namespace, pod):
        return self._call(
            f"Creating pod {namespace}/{pod.metadata.name}",
            self.core_v1.create_namespaced_pod,
            namespace,
            body=pod
        )

    def get_workload_phase(self, namespace, label_selector):
        pods = self._call(
            f"Listing pods in {namespace} with {label_selector}",
            self.core_v1.list_namespaced_pod,
            namespace,
            label_selector=label_selector
        )
        if not pods.items:
            return None
        return pods.items[0].status.phase

    def delete_workload(self, namespace, label_selector):
        self._call(
            f"Deleting pods in {namespace} with {label_selector}",
            self.core_v1.delete_collection_namespaced_pod,
            namespace,
            label_selector=label_selector,
            grace_period_seconds=0,
            propagation_policy="Background"
        )

    def get_node_readiness(self, name):
        node = self.get_node(name)
        for condition in ((node.status.conditions if node.status else None) or []):
            if condition.type == "Ready":
                return condition.status == "True"
        return False

    def record_event(self, namespace, engine_name, reason, message):
        now = datetime.now(timezone.utc)
        event = client.CoreV1Event(
            metadata=client.V1ObjectMeta(generate_name=f"{engine_name}-", namespace=namespace),
            involved_object=client.V1ObjectReference(
                api_version="litmuschaos.io/v1alpha1",
                kind="ChaosEngine",
                name=engine_name,
                namespace=namespace
            ),
            reason=reason,
            message=message,
            type="Normal",
            count=1,
            first_timestamp=now,
            last_timestamp=now,
            source=client.V1EventSource(component="kubechaos")
        )
        self._call(
            f"Recording {reason} event for {namespace}/{engine_name}",
            self.core_v1.create_namespaced_event,
            namespace,
            body=event
        )
