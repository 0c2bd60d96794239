import random
import string
import uuid
from dataclasses import dataclass, field

DEFAULT_HELPER_IMAGE = "litmuschaos/go-runner:latest"

def generate_run_id(length=6, rng=random):
    return ''.join(rng.choice(string.ascii_lowercase + string.digits) for _ in range(length))


@dataclass(frozen=True)
class ExperimentConfig:
    app_label: str
    app_namespace: str = "default"
    chaos_namespace: str = "default"
    experiment_name: str = "node-cpu-hog"
    run_id: str = field(default_factory=generate_run_id)
    chaos_uid: str = field(default_factory=lambda: str(uuid.uuid4()))
    node_cpu_cores: int = 0
    chaos_duration: int = 60
    ramp_time: int = 0
    timeout: int = 180
    delay: int = 2
    helper_image: str = DEFAULT_HELPER_IMAGE
    engine_name: str = ""

    def __post_init__(self):
        if not self.app_label:
            raise ValueError("Application label selector must not be empty")
        if self.node_cpu_cores < 0:
            raise ValueError(f"Invalid CPU core count: {self.node_cpu_cores}. Must be 0 (auto) or greater.")
        if self.chaos_duration < 0:
            raise ValueError(f"Invalid chaos duration: {self.chaos_duration}. Must not be negative.")
        if self.ramp_time < 0:
            raise ValueError(f"Invalid ramp time: {self.ramp_time}. Must not be negative.")
        if self.timeout < 0:
            raise ValueError(f"Invalid status check timeout: {self.timeout}. Must not be negative.")
        if self.delay <= 0:
            raise ValueError(f"Invalid status check delay: {self.delay}. Must be greater than 0.")

    @property
    def helper_name(self):
        return f"{self.experiment_name}-{self.run_id}"

    @property
    def helper_label(self):
        return f"name={self.helper_name}"
