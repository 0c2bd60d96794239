from enum import Enum


class RunResult(Enum):
    COMPLETED = "Completed"
    NO_TARGET_FOUND = "NoTargetFound"
    CAPACITY_LOOKUP_FAILED = "CapacityLookupFailed"
    HELPER_CREATION_FAILED = "HelperCreationFailed"
    HELPER_NOT_RUNNING = "HelperNotRunning"
    HELPER_FAILED = "HelperFailed"
    NODE_UNHEALTHY_AFTER_FAULT = "NodeUnhealthyAfterFault"
    CLEANUP_FAILED = "CleanupFailed"


class ClusterError(Exception):
    #Raised by the cluster client for any failed API call
    pass


class ChaosError(Exception):
    kind = None


class NoTargetFound(ChaosError):
    kind = RunResult.NO_TARGET_FOUND


class CapacityLookupFailed(ChaosError):
    kind = RunResult.CAPACITY_LOOKUP_FAILED


class HelperCreationFailed(ChaosError):
    kind = RunResult.HELPER_CREATION_FAILED


class HelperNotRunning(ChaosError):
    kind = RunResult.HELPER_NOT_RUNNING


class HelperFailed(ChaosError):
    kind = RunResult.HELPER_FAILED


#Warning-only: the orchestrator records these instead of failing the run
class NodeUnhealthyAfterFault(ChaosError):
    kind = RunResult.NODE_UNHEALTHY_AFTER_FAULT


class CleanupFailed(ChaosError):
    kind = RunResult.CLEANUP_FAILED
