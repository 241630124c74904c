"""Source Collector: shallow checkouts of the tracked repositories."""
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional

from botocore.exceptions import ClientError

from health_pipeline.aws.secrets import get_secret_string
from health_pipeline.config.settings import Settings
from health_pipeline.pipeline.errors import FetchError
from health_pipeline.pipeline.models import Artifact, Repository

logger = logging.getLogger(__name__)

STAGE_NAME = "Source"


def repositories_from_settings(settings: Settings) -> List[Repository]:
    """Workspace repository at the root, then one sub-directory per component."""
    repos = [Repository(settings.workspace_repo, settings.workspace_branch, ".")]
    repos.extend(
        Repository(name, settings.component_branch, name)
        for name in settings.component_repos
    )
    return repos


class SourceCollector:
    """Clone each repository at a fixed ref into the scratch workspace."""

    def __init__(self, settings: Settings,
                 token_provider: Optional[Callable[[], str]] = None,
                 run: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.settings = settings
        self.token_provider = token_provider or self._token_from_secrets_manager
        self.run = run

    @property
    def workspace_dir(self) -> Path:
        return Path(self.settings.scratch_dir) / "workspace"

    def _token_from_secrets_manager(self) -> str:
        return get_secret_string(self.settings.github_token_secret_id)

    def prepare_workspace(self) -> Path:
        """Start from an empty workspace directory."""
        scratch = Path(self.settings.scratch_dir)
        if scratch.exists():
            shutil.rmtree(scratch)
        self.workspace_dir.mkdir(parents=True)
        logger.info(f"Prepared clean workspace at {self.workspace_dir}")
        return self.workspace_dir

    def collect(self, repositories: List[Repository]) -> Dict[str, Artifact]:
        """Check out every repository; the first failure aborts the collection.

        Repositories checked out at the root must come first since ``git clone``
        requires an empty target directory.
        """
        try:
            token = self.token_provider()
        except (ClientError, ValueError) as e:
            raise FetchError(f"Could not obtain source-control token: {e}") from e

        self.prepare_workspace()
        artifacts = {}
        for repo in repositories:
            artifacts[repo.name] = self.fetch(repo, token)
        logger.info(f"✅ Checked out {len(artifacts)} repositories")
        return artifacts

    def fetch(self, repo: Repository, token: Optional[str] = None) -> Artifact:
        """Shallow-clone one repository, then strip the token from its remote URL.

        git stores the clone URL as ``remote.origin.url`` in ``.git/config``, so
        the origin is reset to the token-free URL before anything else reads
        the checkout.
        """
        target = (self.workspace_dir / repo.directory).resolve()
        url = self.settings.repo_url(repo.name, token)
        clone = ["git", "clone", "--depth", "1", "--branch", repo.ref, url, str(target)]
        set_url = ["git", "-C", str(target), "remote", "set-url", "origin",
                   self.settings.repo_url(repo.name)]

        logger.info(f"Cloning {repo.name}@{repo.ref} into {target}")
        for cmd in (clone, set_url):
            self._git(cmd, repo, token)

        return Artifact(
            name=repo.name,
            location=str(target),
            produced_by=STAGE_NAME,
            metadata={"ref": repo.ref},
        )

    def _git(self, cmd: List[str], repo: Repository, token: Optional[str]) -> None:
        try:
            self.run(cmd, check=True, capture_output=True, text=True)
        except subprocess.CalledProcessError as e:
            stderr = self._redact(e.stderr or "", token).strip()
            action = cmd[1] if cmd[1] != "-C" else " ".join(cmd[3:5])
            logger.error(f"❌ git {action} for {repo.name} failed: {stderr}")
            raise FetchError(
                f"git {action} of {repo.name}@{repo.ref} exited {e.returncode}: {stderr}",
                repository=repo.name,
            ) from None
        except OSError as e:
            raise FetchError(f"Could not run git for {repo.name}: {e}", repository=repo.name) from e

    @staticmethod
    def _redact(text: str, token: Optional[str]) -> str:
        return text.replace(token, "***") if token else text
