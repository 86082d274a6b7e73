import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


@dataclass
class StorageClassSpec:
    name: str
    provisioner: str
    parameters: Dict[str, str] = field(default_factory=dict)


@dataclass
class VolumeClaim:
    name: str
    namespace: str
    size: str
    storage_class_name: str


@dataclass
class Volume:
    """A bound PersistentVolume as seen by the workflow

    `volume_path` is the backend handle used for attach/detach checks,
    `name` is the PV name the kubelet reports in mount diagnostics.
    """
    name: str
    volume_path: str
    node_name: Optional[str] = None


@dataclass
class Workload:
    name: str
    namespace: str
    claim_names: List[str]
    command: str
    node_name: Optional[str] = None


@dataclass
class DiagnosticEvent:
    target_name: str
    message: str
    reason: Optional[str] = None
    kind: Optional[str] = None

    @classmethod
    def from_api(cls, event):
        involved = event.involved_object
        return cls(
            target_name=involved.name if involved else None,
            kind=involved.kind if involved else None,
            reason=event.reason,
            message=event.message or "",
        )


class ScenarioState(Enum):
    PROVISIONING = "Provisioning"
    ATTACHING = "Attaching"
    VERIFYING = "Verifying"
    CLASSIFYING = "Classifying"
    TEARING_DOWN = "TearingDown"
    DONE = "Done"


@dataclass
class ScenarioResult:
    name: str
    fstype: str
    error: Optional[Exception] = None
    teardown_errors: list = field(default_factory=list)
    states: List[ScenarioState] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def enter(self, state):
        self.states.append(state)

    def record_failure(self, error):
        # Only the first fatal error is the verdict; later ones are noise
        if self.error is None:
            self.error = error

    def finish(self):
        self.enter(ScenarioState.DONE)
        self.finished_at = time.time()

    @property
    def state(self):
        return self.states[-1] if self.states else None

    @property
    def passed(self):
        return self.state == ScenarioState.DONE and self.error is None and not self.teardown_errors

    @property
    def duration(self):
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    @property
    def failure_reason(self):
        if self.error is not None:
            return f"{type(self.error).__name__}: {self.error}"
        if self.teardown_errors:
            return str(self.teardown_errors[0])
        if self.state != ScenarioState.DONE:
            return f"Scenario stopped in state {self.state.value if self.state else None}"
        return None

    def to_dict(self):
        detail = None
        if self.error is not None:
            detail = {"type": type(self.error).__name__, "message": str(self.error)}
            if hasattr(self.error, "expected") and hasattr(self.error, "actual"):
                detail["expected"] = self.error.expected
                detail["actual"] = self.error.actual
        return {
            "name": self.name,
            "fstype": self.fstype,
            "verdict": "pass" if self.passed else "fail",
            "error": detail,
            "failure_reason": self.failure_reason,
            "teardown_errors": [str(e) for e in self.teardown_errors],
            "states": [s.value for s in self.states],
            "duration": self.duration,
        }
