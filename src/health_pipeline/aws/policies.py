"""IAM policy documents for the dev instance role and the pipeline role."""
import json
from typing import Any, Dict, List

from health_pipeline.config.settings import Settings

MODEL_BUCKETS = ["ai-health-model-storage", "aihealthinfra-modelsresults"]
DEV_API_KEY_SECRET = "HealthAI-DevServerAPIKey"

SSM_COMMAND_ACTIONS = [
    "ssm:SendCommand",
    "ssm:GetCommandInvocation",
    "ssm:ListCommands",
    "ssm:ListCommandInvocations",
]


def _statement(actions: List[str], resources: List[str]) -> Dict[str, Any]:
    return {"Effect": "Allow", "Action": actions, "Resource": resources}


def _document(statements: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"Version": "2012-10-17", "Statement": statements}


def instance_role_policy(settings: Settings) -> Dict[str, Any]:
    """Inline policy for the dev instance role.

    AmazonSSMManagedInstanceCore and AmazonS3ReadOnlyAccess are attached as
    managed policies next to it.
    """
    account, region = settings.account_id, settings.aws_region
    return _document([
        _statement(
            ["secretsmanager:GetSecretValue"],
            [f"arn:aws:secretsmanager:{region}:{account}:secret:{DEV_API_KEY_SECRET}-*"],
        ),
        _statement(
            ["s3:PutObject", "s3:GetObject"],
            [f"arn:aws:s3:::{settings.deploy_bucket}/*"],
        ),
        _statement(
            ["s3:GetObject", "s3:PutObject"],
            [f"arn:aws:s3:::{bucket}/*" for bucket in MODEL_BUCKETS],
        ),
    ])


def pipeline_role_policy(settings: Settings) -> Dict[str, Any]:
    """Policy for whatever runs the pipeline: deploy bucket, SSM commands, token secret."""
    account, region = settings.account_id, settings.aws_region
    bucket = settings.deploy_bucket
    return _document([
        _statement(
            ["s3:PutObject", "s3:GetObject", "s3:ListBucket"],
            [f"arn:aws:s3:::{bucket}", f"arn:aws:s3:::{bucket}/*"],
        ),
        _statement(SSM_COMMAND_ACTIONS, ["*"]),
        _statement(
            ["secretsmanager:GetSecretValue"],
            [f"arn:aws:secretsmanager:{region}:{account}:secret:{settings.github_token_secret_id}-*"],
        ),
    ])


def render_policies(settings: Settings) -> str:
    return json.dumps(
        {
            "instance_role": instance_role_policy(settings),
            "pipeline_role": pipeline_role_policy(settings),
        },
        indent=2,
    )
