import boto3
import pytest
from botocore.exceptions import ClientError

from health_pipeline.aws.secrets import get_secret_string
from health_pipeline.pipeline.errors import FetchError
from health_pipeline.pipeline.source import SourceCollector, repositories_from_settings
from tests.consts import TEST_TOKEN
from tests.fixtures.pipeline_fixtures import FakeRunner


def test_repositories_workspace_first(settings):
    repos = repositories_from_settings(settings)

    assert len(repos) == 8
    assert (repos[0].name, repos[0].ref, repos[0].directory) == ("HealthWorkspace", "master", ".")
    assert all(r.ref == "main" and r.directory == r.name for r in repos[1:])


def test_collect_clones_shallow_at_fixed_refs(settings, fake_runner):
    collector = SourceCollector(settings, token_provider=lambda: TEST_TOKEN, run=fake_runner)

    artifacts = collector.collect(repositories_from_settings(settings))

    assert len(artifacts) == 8
    first = fake_runner.clones[0]
    assert first[:6] == ["git", "clone", "--depth", "1", "--branch", "master"]
    assert first[6] == f"https://{TEST_TOKEN}@github.com/S-Ungurean/HealthWorkspace.git"
    assert first[7] == str(collector.workspace_dir.resolve())
    assert artifacts["HealthDAO"].location == str((collector.workspace_dir / "HealthDAO").resolve())
    assert artifacts["HealthDAO"].produced_by == "Source"


def test_collect_starts_from_clean_workspace(settings, fake_runner):
    collector = SourceCollector(settings, token_provider=lambda: TEST_TOKEN, run=fake_runner)
    collector.workspace_dir.mkdir(parents=True)
    stale = collector.workspace_dir / "stale.txt"
    stale.write_text("left over")

    collector.collect(repositories_from_settings(settings)[:1])

    assert not stale.exists()


def test_failed_clone_raises_fetch_error_without_token(settings):
    runner = FakeRunner(fail_clone="HealthSAO")
    collector = SourceCollector(settings, token_provider=lambda: TEST_TOKEN, run=runner)

    with pytest.raises(FetchError) as exc_info:
        collector.collect(repositories_from_settings(settings))

    assert exc_info.value.repository == "HealthSAO"
    assert TEST_TOKEN not in str(exc_info.value)
    assert exc_info.value.__cause__ is None
    # Repositories after the failing one are never attempted
    cloned = [cmd[-2].rsplit("/", 1)[-1] for cmd in runner.clones]
    assert cloned[-1] == "HealthSAO.git"
    assert "HealthFEService.git" not in cloned


def test_token_lookup_failure_is_a_fetch_error(settings, fake_runner):
    def no_token():
        raise ClientError({"Error": {"Code": "AccessDeniedException", "Message": "no"}}, "GetSecretValue")

    collector = SourceCollector(settings, token_provider=no_token, run=fake_runner)

    with pytest.raises(FetchError):
        collector.collect(repositories_from_settings(settings))
    assert fake_runner.calls == []


def test_get_secret_string(mocked_aws):
    client = boto3.client("secretsmanager", region_name="us-east-1")
    client.create_secret(Name="GITHUB_TOKEN", SecretString=TEST_TOKEN)

    assert get_secret_string("GITHUB_TOKEN", client=client) == TEST_TOKEN


def test_get_missing_secret_raises(mocked_aws):
    client = boto3.client("secretsmanager", region_name="us-east-1")
    with pytest.raises(ClientError):
        get_secret_string("GITHUB_TOKEN", client=client)


def test_checkouts_keep_no_token_in_git_config(settings, fake_runner):
    collector = SourceCollector(settings, token_provider=lambda: TEST_TOKEN, run=fake_runner)

    collector.collect(repositories_from_settings(settings))

    assert len(fake_runner.remote_updates) == 8
    assert fake_runner.remote_updates[1][-1] == "https://github.com/S-Ungurean/HealthBEService.git"
    configs = list(collector.workspace_dir.rglob(".git/config"))
    assert len(configs) == 8
    assert all(TEST_TOKEN not in config.read_text() for config in configs)
