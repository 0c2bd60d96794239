import logging
import time

from kubechaos.utils.errors import (
    ClusterError,
    HelperFailed,
    HelperNotRunning,
    NodeUnhealthyAfterFault,
)

logger = logging.getLogger(__name__)

COMPLETION_GRACE_SECONDS = 30
COMPLETION_POLL_INTERVAL = 1
TERMINAL_PHASES = ("Succeeded", "Failed")

def completion_timeout(chaos_duration, grace=COMPLETION_GRACE_SECONDS):
    return chaos_duration + grace

def check_helper_running(cluster, namespace, label_selector, timeout, delay,
                         clock=time.monotonic, sleep=time.sleep):
    start_time = clock()
    last_seen = None

    while True:
        try:
            phase = cluster.get_workload_phase(namespace, label_selector)
            if phase == "Running":
                logger.info(f"[Status]: Helper pod {label_selector} is running")
                return
            #Short-lived helpers can finish between polls, completion checks classify them
            if phase in TERMINAL_PHASES:
                logger.info(f"[Status]: Helper pod {label_selector} already finished with phase {phase}")
                return
            last_seen = f"phase {phase}" if phase else "no pod found"
            logger.info(f"[Status]: Helper pod {label_selector} not running yet ({last_seen})")
        except ClusterError as e:
            last_seen = str(e)
            logger.warning(f"Could not read helper pod status: {e}")

        if clock() - start_time >= timeout:
            raise HelperNotRunning(f"Helper pod {label_selector} not running after {timeout}s: {last_seen}")
        sleep(delay)

def wait_for_completion(cluster, namespace, label_selector, timeout,
                        interval=COMPLETION_POLL_INTERVAL, clock=time.monotonic, sleep=time.sleep):
    """Block until the helper pod reaches a terminal phase and return that phase.

    Raises HelperFailed when `timeout` seconds pass without a terminal phase.
    """
    start_time = clock()
    phase = None

    while True:
        try:
            phase = cluster.get_workload_phase(namespace, label_selector)
            if phase in TERMINAL_PHASES:
                logger.info(f"[Status]: Helper pod {label_selector} finished with phase {phase}")
                return phase
        except ClusterError as e:
            logger.warning(f"Could not read helper pod status: {e}")

        if clock() - start_time >= timeout:
            raise HelperFailed(f"Helper pod {label_selector} did not complete within {timeout}s (last phase: {phase})")
        sleep(interval)

def check_node_status(cluster, node_name, timeout, delay, clock=time.monotonic, sleep=time.sleep):
    start_time = clock()

    while True:
        try:
            if cluster.get_node_readiness(node_name):
                logger.info(f"[Status]: Node {node_name} is ready")
                return
            logger.info(f"[Status]: Node {node_name} is not ready yet")
        except ClusterError as e:
            logger.warning(f"Could not read status of node {node_name}: {e}")

        if clock() - start_time >= timeout:
            raise NodeUnhealthyAfterFault(f"Node {node_name} not ready after {timeout}s")
        sleep(delay)
