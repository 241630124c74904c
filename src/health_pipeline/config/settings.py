# src/health_pipeline/config/settings.py
import logging
import math
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

WORKSPACE_REPO = "HealthWorkspace"

COMPONENT_REPOS = [
    "HealthBEService",
    "HealthDAO",
    "HealthSAO",
    "HealthFEService",
    "HealthInferenceService",
    "HealthCDK",
    "HealthIntegrationTests",
]

# Gradle projects are built in this order
GRADLE_PROJECTS = ["HealthDAO", "HealthSAO", "HealthBEService"]

EXPECTED_PROCESSES = ["healthai", "healthfe", "healthpy", "cassandra"]


class Settings(BaseSettings):
    """
    Single source of truth for pipeline settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from health_pipeline.config.settings import get_settings
        settings = get_settings()
        bucket_name = settings.deploy_bucket
    """

    app_name: str = Field(
        default="health-pipeline",
        description="Application name"
    )

    # Deployment Mode
    deployment_mode: str = Field(
        default="aws-prod",
        description="Deployment mode: local-dev, aws-mock, or aws-prod"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="us-east-1",
        alias="AWS_DEFAULT_REGION"
    )

    aws_access_key_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCESS_KEY_ID"
    )

    aws_secret_access_key: Optional[str] = Field(
        default=None,
        alias="AWS_SECRET_ACCESS_KEY"
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        alias="AWS_ENDPOINT_URL"
    )

    aws_account_id: Optional[str] = Field(
        default=None,
        alias="AWS_ACCOUNT_ID",
        description="AWS Account ID (auto-detected if not provided)"
    )

    # Artifact Store
    deploy_bucket_name: Optional[str] = Field(
        default=None,
        description="Deploy bucket; defaults to health-workspace-deploy-{account}-{region}"
    )

    archive_key: str = Field(
        default="docker_workspace.tar.gz",
        description="Object key of the packaged workspace"
    )

    proxy_config_key: str = Field(
        default="frontend.conf",
        description="Object key of the reverse-proxy config"
    )

    # Source control
    github_owner: str = Field(
        default="S-Ungurean",
        description="Owner of the tracked repositories"
    )

    github_host: str = Field(
        default="github.com",
        description="Source host"
    )

    github_token_secret_id: str = Field(
        default="GITHUB_TOKEN",
        description="Secrets Manager id of the source-control token"
    )

    workspace_repo: str = Field(default=WORKSPACE_REPO)
    workspace_branch: str = Field(default="master")

    component_repos: List[str] = Field(
        default_factory=lambda: list(COMPONENT_REPOS),
        description="Repositories cloned into sub-directories of the workspace"
    )
    component_branch: str = Field(default="main")

    gradle_projects: List[str] = Field(
        default_factory=lambda: list(GRADLE_PROJECTS),
        description="Projects built with their Gradle wrapper, in order"
    )

    scratch_dir: str = Field(
        default="/tmp/build-artifacts",
        description="Scratch space for checkouts and the archive"
    )

    # Remote command targeting
    target_tag_key: str = Field(default="HealthEnv")
    target_tag_value: str = Field(default="dev")

    remote_home: str = Field(default="/home/ec2-user")
    domain_name: str = Field(default="dev.aegiscan.app")
    compose_version: str = Field(default="v2.20.2")

    warmup_seconds: int = Field(
        default=180,
        description="Wait after docker-compose up before checking processes"
    )

    expected_processes: List[str] = Field(
        default_factory=lambda: list(EXPECTED_PROCESSES)
    )

    integration_test_suite: str = Field(
        default="org.dev.HealthDevBEIntegrationTestSuite"
    )

    # Polling. The poll budget and the SSM TimeoutSeconds both come from
    # command_timeout_seconds unless poll_max_attempts is set explicitly.
    command_timeout_seconds: int = Field(
        default=600,
        description="Single timeout for remote commands (SSM TimeoutSeconds and poll budget)"
    )

    poll_interval_seconds: float = Field(
        default=30,
        description="Delay between status polls"
    )

    poll_max_attempts: Optional[int] = Field(
        default=None,
        description="Override for the number of polls; derived from the timeout if unset"
    )

    command_output_prefix: str = Field(
        default="ssm-output",
        description="Key prefix in the deploy bucket for full remote command logs"
    )

    # State
    state_file: str = Field(default=".pipeline_state.json")

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @validator('deployment_mode')
    def validate_deployment_mode(cls, v):
        """Validate deployment mode is one of the allowed values."""
        valid_modes = ["local-dev", "aws-mock", "aws-prod"]
        if v not in valid_modes:
            raise ValueError(f"Invalid deployment_mode: {v}. Must be one of {valid_modes}")
        return v

    @validator('aws_endpoint_url', always=True)
    def set_endpoint_url_based_on_mode(cls, v, values):
        """Auto-set endpoint URL based on deployment mode if not explicitly provided."""
        if v is None and values.get('deployment_mode') in ["local-dev", "aws-mock"]:
            return "http://localhost:5000"
        return v

    @validator('aws_access_key_id', 'aws_secret_access_key', always=True)
    def set_mock_credentials_for_local_modes(cls, v, values):
        """Auto-set mock credentials for local modes if not provided."""
        if v is None and values.get('deployment_mode') in ["local-dev", "aws-mock"]:
            return "mock"
        return v

    @validator('command_timeout_seconds', 'poll_interval_seconds', 'poll_max_attempts')
    def must_be_positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @property
    def account_id(self) -> str:
        """Get AWS account ID with auto-detection fallback."""
        if self.aws_account_id:
            return self.aws_account_id

        if self.deployment_mode == "aws-prod":
            from health_pipeline.aws.clients import get_sts_client
            return get_sts_client().get_caller_identity()['Account']

        # Mock account ID for development modes
        return "123456789012"

    @property
    def deploy_bucket(self) -> str:
        """Name of the deploy bucket."""
        if self.deploy_bucket_name:
            return self.deploy_bucket_name
        return f"health-workspace-deploy-{self.account_id}-{self.aws_region}"

    @property
    def poll_attempts(self) -> int:
        """Number of status polls before a command is declared timed out."""
        if self.poll_max_attempts is not None:
            return self.poll_max_attempts
        return max(1, math.ceil(self.command_timeout_seconds / self.poll_interval_seconds))

    @property
    def poll_budget_seconds(self) -> float:
        return self.poll_attempts * self.poll_interval_seconds

    def check_timeouts(self) -> Optional[str]:
        """Return a warning when the poll budget ends before the command timeout."""
        if self.poll_budget_seconds < self.command_timeout_seconds:
            message = (
                f"Poll budget {self.poll_budget_seconds:.0f}s "
                f"({self.poll_attempts} x {self.poll_interval_seconds:g}s) is shorter than "
                f"command timeout {self.command_timeout_seconds}s; slow commands will be "
                f"reported as timed out while still running"
            )
            logger.warning(message)
            return message
        return None

    def repo_url(self, repo: str, token: Optional[str] = None) -> str:
        """HTTPS clone URL for a repository, with the token embedded if given."""
        credentials = f"{token}@" if token else ""
        return f"https://{credentials}{self.github_host}/{self.github_owner}/{repo}.git"

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
