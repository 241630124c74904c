"""Pipeline model, runner, and the stages of the Health service pipeline."""
from .errors import (
    BuildError,
    CommandFailed,
    CommandNotSent,
    CommandTimeout,
    ConfigurationError,
    FetchError,
    PipelineError,
    StorageError,
)
from .models import Artifact, PipelineRun, Repository, StageResult, StageStatus
from .runner import Pipeline, Stage

__all__ = [
    "Artifact",
    "BuildError",
    "CommandFailed",
    "CommandNotSent",
    "CommandTimeout",
    "ConfigurationError",
    "FetchError",
    "Pipeline",
    "PipelineError",
    "PipelineRun",
    "Repository",
    "Stage",
    "StageResult",
    "StageStatus",
    "StorageError",
]
