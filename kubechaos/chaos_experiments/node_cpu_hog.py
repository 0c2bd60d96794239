import os
import sys
import logging
import argparse
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from dotenv import load_dotenv
from kubernetes import client
from kubernetes.config import ConfigException
from kubernetes.utils import parse_quantity

from kubechaos.utils.config import ExperimentConfig, DEFAULT_HELPER_IMAGE
from kubechaos.utils.errors import (
    RunResult,
    ChaosError,
    ClusterError,
    NoTargetFound,
    CapacityLookupFailed,
    HelperCreationFailed,
    HelperFailed,
    NodeUnhealthyAfterFault,
    CleanupFailed,
)
from kubechaos.utils.k8s_client import KubeCluster, load_api_client
from kubechaos.utils.kafka_producer import ChaosKafkaProducer
from kubechaos.utils.status import (
    check_helper_running,
    wait_for_completion,
    check_node_status,
    completion_timeout,
)

logger = logging.getLogger(__name__)

EVENT_SOURCE = "node_cpu_hog"
STRESS_COMMAND = "/stress-ng"


@dataclass
class ExperimentOutcome:
    result: RunResult = None
    message: str = ""
    warnings: list = field(default_factory=list)
    node_name: str = None
    cpu_cores: int = None
    helper_name: str = None

    @property
    def success(self):
        return self.result == RunResult.COMPLETED

    def warn(self, error):
        self.warnings.append((error.kind, str(error)))

def get_node_name(cluster, namespace, label_selector, rng=None):
    #Pick a random replica of the application and return the node it runs on
    try:
        pods = cluster.list_instances(namespace, label_selector)
    except ClusterError as e:
        raise NoTargetFound(f"Failed to list application pods in {namespace} namespace: {e}") from e
    if not pods:
        raise NoTargetFound(f"No running application pods with label {label_selector} in {namespace} namespace")

    rng = rng or random.Random(time.time())
    pod = pods[rng.randrange(len(pods))]
    logger.info(f"Selected application pod {pod['namespace']}/{pod['name']} on node {pod['node']}")
    return pod['node']

def set_cpu_capacity(cluster, node_name):
    try:
        node = cluster.get_node(node_name)
    except ClusterError as e:
        raise CapacityLookupFailed(f"Failed to get node {node_name}: {e}") from e

    allocatable = (node.status.allocatable or {}) if node.status else {}
    if 'cpu' not in allocatable:
        raise CapacityLookupFailed(f"Node {node_name} reports no allocatable CPU")
    try:
        cores = int(parse_quantity(allocatable['cpu']))
    except ValueError as e:
        raise CapacityLookupFailed(f"Could not parse allocatable CPU '{allocatable['cpu']}' of node {node_name}: {e}") from e

    logger.info(f"Using node allocatable CPU: {cores} cores")
    return cores

def build_helper_pod(cfg, node_name, cpu_cores):
    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=client.V1ObjectMeta(
            name=cfg.helper_name,
            namespace=cfg.chaos_namespace,
            labels={
                "app": cfg.experiment_name,
                "name": cfg.helper_name,
                "chaosUID": cfg.chaos_uid
            }
        ),
        spec=client.V1PodSpec(
            restart_policy="Never",
            node_name=node_name,
            containers=[
                client.V1Container(
                    name=cfg.experiment_name,
                    image=cfg.helper_image,
                    image_pull_policy="Always",
                    command=[STRESS_COMMAND],
                    args=[
                        "--cpu", str(cpu_cores),
                        "--timeout", str(cfg.chaos_duration)
                    ]
                )
            ]
        )
    )

def create_helper_pod(cluster, cfg, node_name, cpu_cores):
    pod = build_helper_pod(cfg, node_name, cpu_cores)
    try:
        cluster.create_workload(cfg.chaos_namespace, pod)
    except ClusterError as e:
        raise HelperCreationFailed(f"Unable to create the helper pod {cfg.chaos_namespace}/{cfg.helper_name}: {e}") from e
    logger.info(f"Created helper pod {cfg.chaos_namespace}/{cfg.helper_name} on node {node_name}")
    return pod

def delete_helper_pod(cluster, cfg, clock=time.monotonic, sleep=time.sleep):
    try:
        cluster.delete_workload(cfg.chaos_namespace, cfg.helper_label)
    except ClusterError as e:
        raise CleanupFailed(f"Unable to delete the helper pod {cfg.chaos_namespace}/{cfg.helper_name}: {e}") from e

    #Deletion is asynchronous, wait until the pod is gone
    start_time = clock()
    while True:
        try:
            if cluster.get_workload_phase(cfg.chaos_namespace, cfg.helper_label) is None:
                logger.info(f"Helper pod {cfg.chaos_namespace}/{cfg.helper_name} deleted")
                return
        except ClusterError as e:
            logger.warning(f"Could not confirm deletion of helper pod: {e}")

        if clock() - start_time >= cfg.timeout:
            raise CleanupFailed(f"Helper pod {cfg.chaos_namespace}/{cfg.helper_name} still present after {cfg.timeout}s")
        sleep(cfg.delay)

def cleanup_helper_pod(cluster, cfg, outcome, clock=time.monotonic, sleep=time.sleep):
    try:
        delete_helper_pod(cluster, cfg, clock=clock, sleep=sleep)
    except CleanupFailed as e:
        logger.warning(f"{e}. Stray helper pods may need to be removed manually")
        outcome.warn(e)

def remove_partial_helper_pod(cluster, cfg, outcome, clock=time.monotonic, sleep=time.sleep):
    #A failed create call may still have stored the pod server side
    try:
        phase = cluster.get_workload_phase(cfg.chaos_namespace, cfg.helper_label)
    except ClusterError as e:
        logger.warning(f"Could not check for a partially created helper pod {cfg.helper_name}: {e}")
        return
    if phase is None:
        return
    logger.info(f"[Cleanup]: Deleting the partially created helper pod {cfg.helper_name} (phase {phase})")
    cleanup_helper_pod(cluster, cfg, outcome, clock=clock, sleep=sleep)

def wait_for_ramp(ramp_time, when, sleep=time.sleep):
    if ramp_time:
        logger.info(f"[Ramp]: Waiting for the {ramp_time}s ramp time {when} injecting chaos")
        sleep(ramp_time)

def notify_chaos_injected(cluster, cfg, node_name):
    message = f"Injecting {cfg.experiment_name} chaos on {node_name} node"
    try:
        cluster.record_event(cfg.chaos_namespace, cfg.engine_name, "ChaosInject", message)
    except ClusterError as e:
        logger.warning(f"Failed to record ChaosInject event for engine {cfg.engine_name}: {e}")

def watch_helper_pod(cluster, cfg, node_name, outcome, clock=time.monotonic, sleep=time.sleep):
    logger.info("[Status]: Checking the status of the helper pod")
    check_helper_running(cluster, cfg.chaos_namespace, cfg.helper_label, cfg.timeout, cfg.delay,
                         clock=clock, sleep=sleep)

    bound = completion_timeout(cfg.chaos_duration)
    logger.info(f"[Wait]: Waiting for {bound}s till the completion of the helper pod")
    phase = wait_for_completion(cluster, cfg.chaos_namespace, cfg.helper_label, bound,
                                clock=clock, sleep=sleep)
    if phase == "Failed":
        raise HelperFailed(f"Helper pod {cfg.chaos_namespace}/{cfg.helper_name} finished with phase Failed")

    #Node degradation is an expected chaos outcome, so it only warns
    logger.info("[Status]: Getting the status of application node")
    try:
        check_node_status(cluster, node_name, cfg.timeout, cfg.delay, clock=clock, sleep=sleep)
    except NodeUnhealthyAfterFault as e:
        logger.warning(f"{e}. Application node is not in the ready state, you may need to manually recover the node")
        outcome.warn(e)

def prepare_node_cpu_hog(cfg, cluster, rng=None, clock=time.monotonic, sleep=time.sleep):
    """Run one node CPU hog experiment against the cluster and classify the result.

    The helper pod is deleted whenever it was created, including when the
    helper never starts or fails. Node readiness and cleanup problems are
    recorded as warnings on the returned outcome and leave the result alone.
    """
    outcome = ExperimentOutcome(helper_name=cfg.helper_name)
    try:
        node_name = get_node_name(cluster, cfg.app_namespace, cfg.app_label, rng=rng)
        outcome.node_name = node_name

        cpu_cores = cfg.node_cpu_cores
        if cpu_cores == 0:
            cpu_cores = set_cpu_capacity(cluster, node_name)
        outcome.cpu_cores = cpu_cores

        logger.info(f"[Info]: Details of application under chaos injection: NodeName={node_name}, NodeCPUcores={cpu_cores}")

        wait_for_ramp(cfg.ramp_time, "before", sleep=sleep)

        if cfg.engine_name:
            notify_chaos_injected(cluster, cfg, node_name)

        logger.info(f"[Chaos]: Creating helper pod {cfg.helper_name} to hog {cpu_cores} cores for {cfg.chaos_duration}s")
        try:
            create_helper_pod(cluster, cfg, node_name, cpu_cores)
        except HelperCreationFailed:
            remove_partial_helper_pod(cluster, cfg, outcome, clock=clock, sleep=sleep)
            raise
        try:
            watch_helper_pod(cluster, cfg, node_name, outcome, clock=clock, sleep=sleep)
        finally:
            logger.info("[Cleanup]: Deleting the helper pod")
            cleanup_helper_pod(cluster, cfg, outcome, clock=clock, sleep=sleep)

        wait_for_ramp(cfg.ramp_time, "after", sleep=sleep)
    except ChaosError as e:
        logger.error(f"Node CPU hog experiment failed ({e.kind.value}): {e}")
        outcome.result = e.kind
        outcome.message = str(e)
        return outcome

    outcome.result = RunResult.COMPLETED
    return outcome

def build_parser():
    parser = argparse.ArgumentParser(description="Saturate the CPU of the node hosting a random application pod")
    parser.add_argument(
        "-l",
        "--app-label",
        type=str,
        required="APP_LABEL" not in os.environ,
        default=os.environ.get("APP_LABEL"),
        metavar="LABEL_SELECTOR",
        help="Label selector of the target application pods, e.g. app=nginx"
    )
    parser.add_argument(
        "-n",
        "--app-namespace",
        type=str,
        default=os.environ.get("APP_NAMESPACE", "default"),
        help="Namespace of the target application"
    )
    parser.add_argument(
        "--chaos-namespace",
        type=str,
        default=os.environ.get("CHAOS_NAMESPACE", "default"),
        help="Namespace the helper pod is created in"
    )
    parser.add_argument(
        "--experiment-name",
        type=str,
        default=os.environ.get("EXPERIMENT_NAME", "node-cpu-hog"),
        help="Experiment name, used to name and label the helper pod"
    )
    parser.add_argument(
        "--run-id",
        type=str,
        default=os.environ.get("RUN_ID"),
        help="Unique run identifier (generated when omitted)"
    )
    parser.add_argument(
        "--chaos-uid",
        type=str,
        default=os.environ.get("CHAOS_UID"),
        help="Correlation id of the parent chaos run (generated when omitted)"
    )
    parser.add_argument(
        "-c",
        "--cores",
        type=int,
        default=os.environ.get("NODE_CPU_CORE", "0"),
        metavar="CORES",
        help="Number of cores to hog; 0 uses the node's allocatable CPU"
    )
    parser.add_argument(
        "-d",
        "--duration",
        type=int,
        default=os.environ.get("TOTAL_CHAOS_DURATION", "60"),
        metavar="SECONDS",
        help="Duration of the CPU hog (in seconds)"
    )
    parser.add_argument(
        "--ramp-time",
        type=int,
        default=os.environ.get("RAMP_TIME", "0"),
        metavar="SECONDS",
        help="Wait before and after injecting chaos (in seconds)"
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=os.environ.get("STATUS_CHECK_TIMEOUT", "180"),
        metavar="SECONDS",
        help="Timeout for status checks (in seconds)"
    )
    parser.add_argument(
        "--delay",
        type=int,
        default=os.environ.get("STATUS_CHECK_DELAY", "2"),
        metavar="SECONDS",
        help="Delay between status checks (in seconds)"
    )
    parser.add_argument(
        "--image",
        type=str,
        default=os.environ.get("LIB_IMAGE", DEFAULT_HELPER_IMAGE),
        help="Image of the helper pod, must provide /stress-ng"
    )
    parser.add_argument(
        "--engine-name",
        type=str,
        default=os.environ.get("CHAOSENGINE", ""),
        help="ChaosEngine to record the ChaosInject event against"
    )
    parser.add_argument(
        "-k",
        "--kube-config",
        type=str,
        default=os.environ.get("KUBECONFIG", "~/.kube/config"),
        metavar="KUBE_CONFIG",
        help="Path to kubeconfig file (falls back to in-cluster config)"
    )
    parser.add_argument(
        "--kafka-brokers",
        type=str,
        default=os.environ.get("KAFKA_BROKERS", "localhost:30092"),
        help="Comma separated Kafka brokers for experiment events"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    return parser

def config_from_args(args):
    optional = {}
    if args.run_id:
        optional["run_id"] = args.run_id
    if args.chaos_uid:
        optional["chaos_uid"] = args.chaos_uid
    return ExperimentConfig(
        app_label=args.app_label,
        app_namespace=args.app_namespace,
        chaos_namespace=args.chaos_namespace,
        experiment_name=args.experiment_name,
        node_cpu_cores=args.cores,
        chaos_duration=args.duration,
        ramp_time=args.ramp_time,
        timeout=args.timeout,
        delay=args.delay,
        helper_image=args.image,
        engine_name=args.engine_name,
        **optional
    )

def main(argv=None):
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level, format='%(asctime)s - %(levelname)s - %(message)s')

    try:
        cfg = config_from_args(args)
    except ValueError as e:
        logger.error(f"Invalid experiment configuration: {e}")
        return 1

    kafka_prod = ChaosKafkaProducer(brokers=args.kafka_brokers.split(","))
    experiment_id = cfg.chaos_uid
    start_time = datetime.now(timezone.utc)
    parameters = {
        "app_namespace": cfg.app_namespace,
        "app_label": cfg.app_label,
        "chaos_namespace": cfg.chaos_namespace,
        "helper_pod": cfg.helper_name,
        "cpu_cores": cfg.node_cpu_cores,
        "spec_duration": cfg.chaos_duration,
        "ramp_time": cfg.ramp_time
    }

    #K8s client setup
    try:
        cluster = KubeCluster(load_api_client(args.kube_config))
        logger.info("Kubernetes client initialized")
    except ConfigException as e:
        logger.error(f"Failed to initialize Kubernetes client: {e}")
        kafka_prod.send_event({
            "timestamp": start_time.isoformat(),
            "experiment_id": experiment_id,
            "event_type": "error",
            "source": EVENT_SOURCE,
            "error": f"K8s client init failed: {e}"
        }, experiment_id)
        kafka_prod.close()
        return 1

    start_event = {
        "timestamp": start_time.isoformat(),
        "experiment_id": experiment_id,
        "event_type": "start",
        "source": EVENT_SOURCE,
        "parameters": parameters
    }
    if not kafka_prod.send_event(start_event, experiment_id):
        logger.debug(f"START event for experiment {experiment_id} was not sent")

    outcome = None
    try:
        outcome = prepare_node_cpu_hog(cfg, cluster)
        if not outcome.success:
            kafka_prod.send_event({
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "experiment_id": experiment_id,
                "event_type": "error",
                "source": EVENT_SOURCE,
                "parameters": parameters,
                "error": f"{outcome.result.value}: {outcome.message}"
            }, experiment_id)
    #Ensure end event is always sent, kafka producer is always closed
    finally:
        end_time = datetime.now(timezone.utc)
        end_event = {
            "timestamp": end_time.isoformat(),
            "experiment_id": experiment_id,
            "event_type": "end",
            "source": EVENT_SOURCE,
            "parameters": parameters,
            "success": bool(outcome and outcome.success),
            "result": outcome.result.value if outcome else None,
            "node": outcome.node_name if outcome else None,
            "cpu_cores": outcome.cpu_cores if outcome else None,
            "warnings": [f"{kind.value}: {message}" for kind, message in outcome.warnings] if outcome else [],
            "duration": (end_time - start_time).total_seconds()
        }
        if not kafka_prod.send_event(end_event, experiment_id):
            logger.debug(f"END event for experiment {experiment_id} was not sent")

        kafka_prod.close()
        logger.info(f"Experiment {experiment_id} finished. Duration: {(end_time - start_time).total_seconds():.2f}s.")

    if outcome.warnings:
        for kind, message in outcome.warnings:
            logger.warning(f"[{kind.value}]: {message}")
    if outcome.success:
        logger.info(f"Node CPU hog on {outcome.node_name} completed")
        return 0
    logger.error(f"Node CPU hog failed: {outcome.result.value}")
    return 1

if __name__ == "__main__":
    sys.exit(main())
