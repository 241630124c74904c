# cli.py
import json
import logging
import sys

import click

from health_pipeline.aws.policies import render_policies
from health_pipeline.config.settings import get_settings
from health_pipeline.pipeline.errors import PipelineError
from health_pipeline.pipeline.definition import HealthPipeline
from health_pipeline.pipeline.runner import Pipeline, Stage
from health_pipeline.remote.bootstrap import bootstrap_document, render_user_data
from health_pipeline.remote.deploy import DeployExecutor
from health_pipeline.remote.dispatcher import RemoteCommandDispatcher
from health_pipeline.remote.integration import IntegrationTestExecutor
from health_pipeline.state.run_state import RunStateManager
from health_pipeline.storage.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)


def _dispatcher(settings) -> RemoteCommandDispatcher:
    store = ArtifactStore(settings.deploy_bucket, settings.aws_region)
    return RemoteCommandDispatcher.from_settings(settings, output_store=store)


def _report(run) -> None:
    for stage in run.stages:
        line = f"  {stage.ordinal}. {stage.name}: {stage.status.value}"
        if stage.error_classification:
            line += f" [{stage.error_classification}] {stage.error_message}"
        print(line)
    if run.succeeded:
        print(f"✅ Run {run.run_id} succeeded")
    else:
        print(f"❌ Run {run.run_id} failed")


@click.group()
@click.option("--verbose", is_flag=True, help="Verbose logging")
@click.pass_context
def cli(ctx, verbose):
    """Health service delivery pipeline"""
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj = settings


@cli.command()
@click.pass_obj
def show_config(settings):
    """Show current configuration"""
    print("Current Configuration:")
    print(f"  Deployment Mode: {settings.deployment_mode}")
    print(f"  AWS Region: {settings.aws_region}")
    print(f"  AWS Endpoint: {settings.aws_endpoint_url}")
    print(f"  Deploy Bucket: {settings.deploy_bucket}")
    print(f"  Target: tag:{settings.target_tag_key}={settings.target_tag_value}")
    print(f"  Repositories: {settings.workspace_repo}@{settings.workspace_branch}, "
          f"{', '.join(settings.component_repos)}@{settings.component_branch}")
    print(f"  Command Timeout: {settings.command_timeout_seconds}s")
    print(f"  Polling: {settings.poll_attempts} x {settings.poll_interval_seconds:g}s")
    warning = settings.check_timeouts()
    if warning:
        print(f"  ⚠️ {warning}")


@cli.command()
@click.option("--run-id", default=None, help="Identifier for this run")
@click.pass_obj
def run(settings, run_id):
    """Run Source -> Package -> DeployToDev -> IntegrationTests"""
    state = RunStateManager(settings.state_file)
    pipeline = HealthPipeline(settings, state=state).build()
    result = pipeline.run(run_id=run_id)
    _report(result)
    if not result.succeeded:
        sys.exit(1)


@cli.command()
@click.pass_obj
def source(settings):
    """Check out every repository into the scratch workspace"""
    health = HealthPipeline(settings)
    _run_single(Stage("Source", health.source))


@cli.command()
@click.pass_obj
def package(settings):
    """Build the already checked-out workspace and upload the archive"""
    health = HealthPipeline(settings)
    _run_single(Stage("Package", health.package))


@cli.command()
@click.pass_obj
def deploy(settings):
    """Deploy the archive in the bucket to the dev fleet"""
    executor = DeployExecutor(settings, _dispatcher(settings))
    _run_single(Stage("DeployToDev", lambda inputs: _discard(executor.run())))


@cli.command()
@click.pass_obj
def integration_test(settings):
    """Run the integration test suite on the dev fleet"""
    executor = IntegrationTestExecutor(settings, _dispatcher(settings))
    _run_single(Stage("IntegrationTests", lambda inputs: _discard(executor.run())))


@cli.command()
@click.argument("what", type=click.Choice(["deploy", "integration", "bootstrap", "policies"]))
@click.option("--describe", is_flag=True, help="Show the step list instead of the shell payload")
@click.pass_obj
def render(settings, what, describe):
    """Print a command document or the IAM policies"""
    if what == "policies":
        print(render_policies(settings))
        return

    if what == "bootstrap":
        document = bootstrap_document(settings)
    else:
        executor_cls = DeployExecutor if what == "deploy" else IntegrationTestExecutor
        document = executor_cls(settings).document()

    if describe:
        print(json.dumps(document.describe(), indent=2))
    elif what == "bootstrap":
        print(render_user_data(document), end="")
    else:
        print(document.to_json())


@cli.command()
@click.pass_obj
def ensure_bucket(settings):
    """Create the deploy bucket if it does not exist"""
    store = ArtifactStore(settings.deploy_bucket, settings.aws_region)
    try:
        created = store.ensure_bucket()
    except PipelineError as e:
        print(f"❌ {e}")
        sys.exit(1)
    print(f"{'Created' if created else 'Using existing'} bucket {settings.deploy_bucket}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def status(settings, as_json):
    """Show the last recorded run"""
    state = RunStateManager(settings.state_file).state
    if as_json:
        print(json.dumps(state, indent=2, default=str))
        return
    if not state.get("run_id"):
        print("No pipeline run recorded")
        return
    print(f"Run {state['run_id']} ({state['status']}), last updated {state['last_updated']}")
    for stage in state.get("stages", []):
        line = f"  {stage['ordinal']}. {stage['name']}: {stage['status']}"
        if stage.get("error_classification"):
            line += f" [{stage['error_classification']}]"
        print(line)


def _discard(_result):
    return {}


def _run_single(stage: Stage) -> None:
    result = Pipeline(stage.name, [stage]).run()
    _report(result)
    if not result.succeeded:
        sys.exit(1)


if __name__ == "__main__":
    cli()
