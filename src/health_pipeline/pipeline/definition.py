"""The Health service pipeline: Source -> Package -> DeployToDev -> IntegrationTests."""
import logging
from typing import Dict, Mapping, Optional

from health_pipeline.config.settings import Settings
from health_pipeline.pipeline.builder import Builder
from health_pipeline.pipeline.models import Artifact
from health_pipeline.pipeline.runner import Pipeline, Stage
from health_pipeline.pipeline.source import SourceCollector, repositories_from_settings
from health_pipeline.remote.deploy import DeployExecutor
from health_pipeline.remote.dispatcher import RemoteCommandDispatcher
from health_pipeline.remote.integration import TEST_PROJECT, IntegrationTestExecutor
from health_pipeline.state.run_state import RunStateManager
from health_pipeline.storage.artifact_store import ArtifactStore
from health_pipeline.utils.decorators import log_operation

logger = logging.getLogger(__name__)

PIPELINE_NAME = "HealthServicePipeline"
DEPLOYMENT_ARTIFACT = "deployment"


class HealthPipeline:
    """Wires the collector, builder, and executors into pipeline stages."""

    def __init__(self, settings: Settings,
                 store: Optional[ArtifactStore] = None,
                 dispatcher: Optional[RemoteCommandDispatcher] = None,
                 collector: Optional[SourceCollector] = None,
                 builder: Optional[Builder] = None,
                 state: Optional[RunStateManager] = None):
        self.settings = settings
        self.store = store or ArtifactStore(settings.deploy_bucket, settings.aws_region)
        self.dispatcher = dispatcher or RemoteCommandDispatcher.from_settings(settings, output_store=self.store)
        self.collector = collector or SourceCollector(settings)
        self.builder = builder or Builder(settings, self.store)
        self.state = state

    @log_operation("Source")
    def source(self, inputs: Mapping[str, Artifact]) -> Dict[str, Artifact]:
        return self.collector.collect(repositories_from_settings(self.settings))

    @log_operation("Package")
    def package(self, inputs: Mapping[str, Artifact]) -> Dict[str, Artifact]:
        return self.builder.build_and_publish()

    @log_operation("DeployToDev")
    def deploy(self, inputs: Mapping[str, Artifact]) -> Dict[str, Artifact]:
        result = DeployExecutor(self.settings, self.dispatcher).run()
        return {
            DEPLOYMENT_ARTIFACT: Artifact(
                name=DEPLOYMENT_ARTIFACT,
                location=f"ssm:{result.command_id}",
                produced_by="DeployToDev",
                metadata={"attempts": result.attempts, "archive": inputs[self.settings.archive_key].location},
            )
        }

    @log_operation("IntegrationTests")
    def integration_tests(self, inputs: Mapping[str, Artifact]) -> Dict[str, Artifact]:
        IntegrationTestExecutor(self.settings, self.dispatcher).run()
        return {}

    def build(self) -> Pipeline:
        s = self.settings
        package_inputs = tuple(dict.fromkeys([s.workspace_repo, "HealthCDK", *s.gradle_projects]))
        stages = [
            Stage("Source", self.source),
            Stage("Package", self.package, inputs=package_inputs),
            Stage("DeployToDev", self.deploy, inputs=(s.archive_key, s.proxy_config_key)),
            Stage("IntegrationTests", self.integration_tests, inputs=(TEST_PROJECT, DEPLOYMENT_ARTIFACT)),
        ]
        return Pipeline(PIPELINE_NAME, stages, state=self.state)
