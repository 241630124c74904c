"""Secrets Manager lookups."""
import logging
from typing import Any, Optional

from botocore.exceptions import ClientError

from health_pipeline.aws.clients import get_secretsmanager_client

logger = logging.getLogger(__name__)


def get_secret_string(secret_id: str, client: Optional[Any] = None) -> str:
    """Return the ``SecretString`` of a secret.

    Raises:
        ClientError: If the secret cannot be read
        ValueError: If the secret has no string value
    """
    client = client or get_secretsmanager_client()
    try:
        response = client.get_secret_value(SecretId=secret_id)
    except ClientError as e:
        logger.error(f"Failed to read secret {secret_id}: {e.response['Error']['Code']}")
        raise
    value = response.get("SecretString")
    if not value:
        raise ValueError(f"Secret {secret_id} has no string value")
    logger.debug(f"Read secret {secret_id}")
    return value
