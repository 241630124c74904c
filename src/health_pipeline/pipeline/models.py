"""Data model for pipeline runs: repositories, artifacts, stage results."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional


class StageStatus(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    NOT_RUN = "NotRun"


@dataclass(frozen=True)
class Repository:
    """A source tree to check out: repository name, ref, and target directory.

    ``directory`` is relative to the workspace root; ``"."`` checks the
    repository out at the root itself.
    """
    name: str
    ref: str
    directory: str


@dataclass(frozen=True)
class Artifact:
    """Immutable named bundle produced by one stage.

    ``location`` is a local path for checkouts or an ``s3://`` URI for
    objects in the Artifact Store. ``metadata`` is a read-only copy of
    what was passed in.
    """
    name: str
    location: str
    produced_by: str
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


@dataclass
class StageResult:
    name: str
    ordinal: int
    status: StageStatus = StageStatus.PENDING
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    error_classification: Optional[str] = None
    error_message: Optional[str] = None
    outputs: List[str] = field(default_factory=list)

    def start(self) -> None:
        self.status = StageStatus.RUNNING
        self.started_at = datetime.utcnow().isoformat()

    def succeed(self, outputs: List[str]) -> None:
        self.status = StageStatus.SUCCEEDED
        self.outputs = list(outputs)
        self.finished_at = datetime.utcnow().isoformat()

    def fail(self, classification: str, message: str) -> None:
        self.status = StageStatus.FAILED
        self.error_classification = classification
        self.error_message = message
        self.finished_at = datetime.utcnow().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "ordinal": self.ordinal,
            "status": self.status.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error_classification": self.error_classification,
            "error_message": self.error_message,
            "outputs": self.outputs,
        }


@dataclass
class PipelineRun:
    run_id: str
    pipeline_name: str
    stages: List[StageResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.stages) and all(s.status == StageStatus.SUCCEEDED for s in self.stages)

    @property
    def failed_stage(self) -> Optional[StageResult]:
        for stage in self.stages:
            if stage.status == StageStatus.FAILED:
                return stage
        return None

    @property
    def status(self) -> str:
        if self.failed_stage is not None:
            return "failed"
        if self.succeeded:
            return "succeeded"
        return "running"

    def stage(self, name: str) -> StageResult:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline_name": self.pipeline_name,
            "status": self.status,
            "stages": [s.to_dict() for s in self.stages],
        }
