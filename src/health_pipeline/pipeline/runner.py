"""Sequential pipeline runner.

Stages run strictly in order. A stage starts only after its predecessor
succeeded, sees only the artifacts it declares as inputs, and may not
produce an artifact name that already exists. The first failure stops the
run; the remaining stages are reported as not run. Nothing is retried.
"""
import logging
import uuid
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from health_pipeline.pipeline.errors import ConfigurationError, PipelineError
from health_pipeline.pipeline.models import Artifact, PipelineRun, StageResult, StageStatus
from health_pipeline.state.run_state import RunStateManager

logger = logging.getLogger(__name__)

StageAction = Callable[[Mapping[str, Artifact]], Dict[str, Artifact]]


@dataclass(frozen=True)
class Stage:
    name: str
    action: StageAction
    inputs: Tuple[str, ...] = ()


class Pipeline:
    def __init__(self, name: str, stages: List[Stage],
                 state: Optional[RunStateManager] = None):
        names = [stage.name for stage in stages]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate stage names in {name}: {names}")
        self.name = name
        self.stages = list(stages)
        self.state = state

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def run(self, run_id: Optional[str] = None) -> PipelineRun:
        """Run every stage in order; returns the run with per-stage results.

        Pipeline errors end the run and are recorded on the failing stage.
        Anything else is recorded and re-raised.
        """
        run = PipelineRun(
            run_id=run_id or uuid.uuid4().hex[:12],
            pipeline_name=self.name,
            stages=[StageResult(stage.name, ordinal) for ordinal, stage in enumerate(self.stages, 1)],
        )
        if self.state:
            self.state.start_run(run)

        logger.info(f"Starting {self.name} run {run.run_id}: {' -> '.join(self.stage_names)}")
        artifacts: Dict[str, Artifact] = {}

        for stage, result in zip(self.stages, run.stages):
            result.start()
            self._record(run)
            logger.info(f"==== STAGE {result.ordinal}: {stage.name} ====")
            try:
                inputs = self._resolve_inputs(stage, artifacts)
                outputs = stage.action(MappingProxyType(inputs)) or {}
                self._register_outputs(stage, outputs, artifacts)
            except PipelineError as e:
                result.fail(e.classification, str(e))
                self._skip_remaining(run)
                self._record(run)
                logger.error(f"❌ Stage {stage.name} failed ({e.classification}): {e}")
                return run
            except Exception as e:
                result.fail(type(e).__name__, str(e))
                self._skip_remaining(run)
                self._record(run)
                logger.exception(f"❌ Stage {stage.name} raised an unexpected error")
                raise

            result.succeed(sorted(outputs))
            self._record(run)
            logger.info(f"✅ Stage {stage.name} succeeded")

        logger.info(f"✅ {self.name} run {run.run_id} succeeded")
        return run

    @staticmethod
    def _resolve_inputs(stage: Stage, artifacts: Dict[str, Artifact]) -> Dict[str, Artifact]:
        missing = [name for name in stage.inputs if name not in artifacts]
        if missing:
            raise ConfigurationError(f"Stage {stage.name} is missing input artifacts: {missing}")
        return {name: artifacts[name] for name in stage.inputs}

    @staticmethod
    def _register_outputs(stage: Stage, outputs: Dict[str, Artifact],
                          artifacts: Dict[str, Artifact]) -> None:
        clashes = [name for name in outputs if name in artifacts]
        if clashes:
            raise ConfigurationError(f"Stage {stage.name} would overwrite artifacts: {clashes}")
        artifacts.update(outputs)

    @staticmethod
    def _skip_remaining(run: PipelineRun) -> None:
        for result in run.stages:
            if result.status == StageStatus.PENDING:
                result.status = StageStatus.NOT_RUN

    def _record(self, run: PipelineRun) -> None:
        if self.state:
            self.state.record(run)
