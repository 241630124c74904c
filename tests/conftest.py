"""Shared fixtures for pipeline tests."""
import boto3
import pytest
from moto import mock_aws

from health_pipeline.aws.clients import AWSClientManager
from health_pipeline.config.settings import Settings, get_settings
from tests.consts import TEST_ACCOUNT_ID, TEST_BUCKET_NAME
from tests.fixtures.pipeline_fixtures import fake_runner, no_sleep  # noqa: F401


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Mocked AWS credentials so nothing reaches a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.delenv("AWS_PROFILE", raising=False)


@pytest.fixture(autouse=True)
def fresh_aws_clients():
    """Drop cached boto3 clients and settings so each test builds its own."""
    get_settings.cache_clear()
    yield
    AWSClientManager().reset()
    get_settings.cache_clear()


@pytest.fixture
def mocked_aws(aws_credentials):
    with mock_aws():
        s3_client = boto3.client("s3", region_name="us-east-1")
        s3_client.create_bucket(Bucket=TEST_BUCKET_NAME)
        yield


@pytest.fixture
def s3_client(mocked_aws):
    return boto3.client("s3", region_name="us-east-1")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        deployment_mode="aws-prod",
        aws_account_id=TEST_ACCOUNT_ID,
        deploy_bucket_name=TEST_BUCKET_NAME,
        scratch_dir=str(tmp_path / "build-artifacts"),
        state_file=str(tmp_path / "state.json"),
    )
