"""Builder: compile the Gradle projects, pack the workspace, upload it."""
import logging
import os
import stat
import subprocess
import tarfile
from pathlib import Path
from typing import Callable, Dict, List, Optional

from health_pipeline.config.settings import Settings
from health_pipeline.pipeline.errors import BuildError
from health_pipeline.pipeline.models import Artifact
from health_pipeline.storage.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)

STAGE_NAME = "Package"
GRADLE_BUILD = ["./gradlew", "clean", "build", "-x", "test"]
PROXY_CONFIG_PATH = Path("HealthCDK") / "resources" / "frontend.conf"

# Checkout metadata stays in the scratch workspace
EXCLUDED_NAMES = {".git"}


class Builder:
    """Build each project in sequence, then package and upload the workspace.

    Any build failure aborts the whole stage before anything is uploaded.
    """

    def __init__(self, settings: Settings, store: ArtifactStore,
                 run: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.settings = settings
        self.store = store
        self.run = run

    @property
    def scratch_dir(self) -> Path:
        return Path(self.settings.scratch_dir)

    @property
    def workspace_dir(self) -> Path:
        return self.scratch_dir / "workspace"

    def build_all(self, projects: Optional[List[str]] = None) -> None:
        for project in projects or self.settings.gradle_projects:
            self.build_project(project)

    def build_project(self, project: str) -> None:
        project_dir = self.workspace_dir / project
        gradlew = project_dir / "gradlew"
        if not gradlew.exists():
            raise BuildError(f"{project} has no Gradle wrapper at {gradlew}", project=project)

        gradlew.chmod(gradlew.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        logger.info(f"==== BUILDING {project} ====")
        try:
            self.run(GRADLE_BUILD, cwd=str(project_dir), check=True)
        except subprocess.CalledProcessError as e:
            logger.error(f"❌ Build of {project} exited {e.returncode}")
            raise BuildError(
                f"Build of {project} exited {e.returncode}",
                project=project,
                returncode=e.returncode,
            ) from e
        except OSError as e:
            raise BuildError(f"Could not run Gradle for {project}: {e}", project=project) from e

    def package(self) -> Path:
        """Pack the workspace into a gzip tarball with ``workspace/`` at its top.

        ``.git`` directories are left out of the archive.
        """
        if not self.workspace_dir.is_dir():
            raise BuildError(f"Nothing to package: {self.workspace_dir} does not exist")

        archive_path = self.scratch_dir / self.settings.archive_key
        logger.info(f"==== PACKAGING WORKSPACE into {archive_path} ====")
        with tarfile.open(archive_path, "w:gz") as tar:
            tar.add(str(self.workspace_dir), arcname="workspace", filter=_exclude_checkout_metadata)
        logger.info(f"Archive size: {os.path.getsize(archive_path)} bytes")
        return archive_path

    def publish(self, archive_path: Path) -> Dict[str, Artifact]:
        """Upload the proxy config and the archive to the Artifact Store."""
        proxy_config = self.workspace_dir / PROXY_CONFIG_PATH
        if not proxy_config.is_file():
            raise BuildError(f"Reverse-proxy config missing at {proxy_config}")

        config_uri = self.store.upload_file(self.settings.proxy_config_key, proxy_config,
                                            content_type="text/plain")
        archive_uri = self.store.upload_file(self.settings.archive_key, archive_path,
                                             content_type="application/gzip")
        return {
            self.settings.proxy_config_key: Artifact(
                name=self.settings.proxy_config_key,
                location=config_uri,
                produced_by=STAGE_NAME,
            ),
            self.settings.archive_key: Artifact(
                name=self.settings.archive_key,
                location=archive_uri,
                produced_by=STAGE_NAME,
                metadata={"size": archive_path.stat().st_size},
            ),
        }

    def build_and_publish(self) -> Dict[str, Artifact]:
        self.build_all()
        archive_path = self.package()
        artifacts = self.publish(archive_path)
        logger.info("✅ Packaging complete")
        return artifacts


def _exclude_checkout_metadata(member: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
    if Path(member.name).name in EXCLUDED_NAMES:
        return None
    return member
