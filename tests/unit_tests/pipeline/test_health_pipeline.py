"""End-to-end runs of the four-stage pipeline against moto S3 and a fake SSM fleet."""
import pytest

from health_pipeline.pipeline.builder import Builder
from health_pipeline.pipeline.definition import HealthPipeline
from health_pipeline.pipeline.models import StageStatus
from health_pipeline.pipeline.source import SourceCollector
from health_pipeline.remote.dispatcher import RemoteCommandDispatcher
from health_pipeline.state.run_state import RunStateManager
from health_pipeline.storage.artifact_store import ArtifactStore
from tests.consts import TEST_BUCKET_NAME, TEST_TOKEN
from tests.fixtures.pipeline_fixtures import FakeRunner, FakeSSMClient

STAGES = ["Source", "Package", "DeployToDev", "IntegrationTests"]


@pytest.fixture
def store(s3_client):
    return ArtifactStore(TEST_BUCKET_NAME, s3_client=s3_client)


def build_pipeline(settings, store, runner, ssm, sleep):
    return HealthPipeline(
        settings,
        store=store,
        dispatcher=RemoteCommandDispatcher(ssm_client=ssm, sleep=sleep),
        collector=SourceCollector(settings, token_provider=lambda: TEST_TOKEN, run=runner),
        builder=Builder(settings, store, run=runner),
        state=RunStateManager(settings.state_file),
    ).build()


def test_happy_path(settings, store, fake_runner, no_sleep):
    ssm = FakeSSMClient(["InProgress", "Success"])
    pipeline = build_pipeline(settings, store, fake_runner, ssm, no_sleep)

    run = pipeline.run()

    assert pipeline.stage_names == STAGES
    assert run.succeeded
    assert store.exists("docker_workspace.tar.gz")
    assert [c["Comment"] for c in ssm.sent] == ["Deploy full workspace", "Run Dev Integration Tests"]
    assert RunStateManager(settings.state_file).state["status"] == "succeeded"


def test_source_failure_halts_before_package(settings, store, no_sleep):
    runner = FakeRunner(fail_clone="HealthInferenceService")
    ssm = FakeSSMClient()

    run = build_pipeline(settings, store, runner, ssm, no_sleep).run()

    assert run.stage("Source").status == StageStatus.FAILED
    assert run.stage("Source").error_classification == "FetchError"
    assert [run.stage(n).status for n in STAGES[1:]] == [StageStatus.NOT_RUN] * 3
    assert runner.builds == []
    assert ssm.sent == []


def test_backend_build_failure_never_deploys(settings, store, no_sleep):
    runner = FakeRunner(fail_build="HealthBEService")
    ssm = FakeSSMClient()

    run = build_pipeline(settings, store, runner, ssm, no_sleep).run()

    assert run.stage("Package").error_classification == "BuildError"
    assert not store.exists("docker_workspace.tar.gz")
    assert run.stage("DeployToDev").status == StageStatus.NOT_RUN
    assert ssm.sent == []


def test_deploy_timeout_skips_integration_tests(settings, store, fake_runner, no_sleep):
    ssm = FakeSSMClient(["InProgress"])

    run = build_pipeline(settings, store, fake_runner, ssm, no_sleep).run()

    assert run.stage("DeployToDev").error_classification == "CommandTimeout"
    assert run.stage("IntegrationTests").status == StageStatus.NOT_RUN
    assert ssm.polls == 20
    assert len(ssm.sent) == 1


def test_failed_verification_is_reported_with_step(settings, store, fake_runner, no_sleep):
    output = "==> step 12/12 verify-processes\n==> failed verify-processes: missing process healthpy"
    ssm = FakeSSMClient(["Failed"], output=output)

    run = build_pipeline(settings, store, fake_runner, ssm, no_sleep).run()

    deploy = run.stage("DeployToDev")
    assert deploy.error_classification == "CommandFailed"
    assert "verify-processes" in deploy.error_message


def test_throttled_status_read_does_not_abort_the_stage(settings, store, fake_runner, no_sleep):
    # Poll 1 finishes the deploy; poll 2 belongs to the integration tests
    ssm = FakeSSMClient(["Success"], poll_errors={2: "ThrottlingException"})

    run = build_pipeline(settings, store, fake_runner, ssm, no_sleep).run()

    assert run.succeeded
    assert ssm.polls == 3
    assert no_sleep.calls == [30]
