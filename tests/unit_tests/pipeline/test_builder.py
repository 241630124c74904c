import io
import tarfile

import pytest

from health_pipeline.pipeline.builder import Builder
from health_pipeline.pipeline.errors import BuildError
from health_pipeline.pipeline.source import SourceCollector, repositories_from_settings
from health_pipeline.storage.artifact_store import ArtifactStore
from tests.consts import TEST_BUCKET_NAME, TEST_TOKEN
from tests.fixtures.pipeline_fixtures import FakeRunner


@pytest.fixture
def store(s3_client):
    return ArtifactStore(TEST_BUCKET_NAME, s3_client=s3_client)


def checkout(settings, runner):
    SourceCollector(settings, token_provider=lambda: TEST_TOKEN, run=runner).collect(
        repositories_from_settings(settings)
    )


def test_builds_in_order_then_uploads(settings, store, fake_runner):
    checkout(settings, fake_runner)

    artifacts = Builder(settings, store, run=fake_runner).build_and_publish()

    assert fake_runner.builds == ["HealthDAO", "HealthSAO", "HealthBEService"]
    assert set(artifacts) == {"docker_workspace.tar.gz", "frontend.conf"}
    assert store.get_object("frontend.conf") == b"server { listen 443; }\n"

    archive = tarfile.open(fileobj=io.BytesIO(store.get_object("docker_workspace.tar.gz")), mode="r:gz")
    names = archive.getnames()
    assert "workspace/docker-compose.yml" in names
    assert "workspace/HealthBEService/gradlew" in names
    assert all(name.split("/")[0] == "workspace" for name in names)


def test_backend_build_failure_uploads_nothing(settings, store):
    runner = FakeRunner(fail_build="HealthBEService")
    checkout(settings, runner)

    with pytest.raises(BuildError) as exc_info:
        Builder(settings, store, run=runner).build_and_publish()

    assert exc_info.value.project == "HealthBEService"
    assert exc_info.value.returncode == 1
    assert not store.exists("docker_workspace.tar.gz")
    assert not store.exists("frontend.conf")


def test_first_failure_stops_remaining_builds(settings, store):
    runner = FakeRunner(fail_build="HealthDAO")
    checkout(settings, runner)

    with pytest.raises(BuildError):
        Builder(settings, store, run=runner).build_all()
    assert runner.builds == ["HealthDAO"]


def test_missing_wrapper_is_a_build_error(settings, store, fake_runner):
    checkout(settings, fake_runner)
    (Builder(settings, store).workspace_dir / "HealthSAO" / "gradlew").unlink()

    with pytest.raises(BuildError):
        Builder(settings, store, run=fake_runner).build_all()


def test_package_without_workspace_fails(settings, store):
    with pytest.raises(BuildError):
        Builder(settings, store).package()


def test_archive_never_carries_the_token(settings, store, fake_runner):
    checkout(settings, fake_runner)
    builder = Builder(settings, store, run=fake_runner)
    # A checkout whose remote still embeds the token
    leaked = builder.workspace_dir / "HealthDAO" / ".git" / "config"
    leaked.write_text(f"[remote \"origin\"]\n\turl = https://{TEST_TOKEN}@github.com/S-Ungurean/HealthDAO.git\n")

    builder.build_and_publish()

    archive = tarfile.open(fileobj=io.BytesIO(store.get_object("docker_workspace.tar.gz")), mode="r:gz")
    members = archive.getmembers()
    assert not any(".git" in m.name.split("/") for m in members)
    for member in members:
        if member.isfile():
            assert TEST_TOKEN.encode() not in archive.extractfile(member).read(), member.name
