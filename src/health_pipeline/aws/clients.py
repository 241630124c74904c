"""Shared boto3 clients, one per service per process."""
import logging
import os
from typing import Any, Optional

import boto3

from health_pipeline.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

LOCAL_MODES = ("local-dev", "aws-mock")


class AWSClientManager:
    """Process-wide cache of boto3 clients built from the pipeline settings.

    In ``aws-prod`` an ``AWS_PROFILE`` (SSO) session wins over explicit keys.
    Local and mock modes send every call to the moto server endpoint.
    """
    _instance: Optional["AWSClientManager"] = None

    def __new__(cls):
        if cls._instance is None:
            instance = super().__new__(cls)
            instance._clients = {}
            instance._session = None
            cls._instance = instance
        return cls._instance

    def _create_session(self, settings: Settings) -> boto3.Session:
        profile = os.environ.get("AWS_PROFILE")
        if profile and settings.deployment_mode == "aws-prod":
            logger.info(f"AWS session from profile {profile} ({settings.aws_region})")
            return boto3.Session(profile_name=profile, region_name=settings.aws_region)

        logger.info(f"AWS session for {settings.deployment_mode} ({settings.aws_region})")
        return boto3.Session(
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )

    def client(self, service_name: str) -> Any:
        """Cached client for ``service_name``, created on first use."""
        if service_name not in self._clients:
            settings = get_settings()
            if self._session is None:
                self._session = self._create_session(settings)
            endpoint_url = settings.aws_endpoint_url if settings.deployment_mode in LOCAL_MODES else None
            self._clients[service_name] = self._session.client(service_name, endpoint_url=endpoint_url)
            logger.debug(f"Created {service_name} client (endpoint: {endpoint_url or 'default'})")
        return self._clients[service_name]

    def reset(self) -> None:
        """Forget the session and every client, e.g. after settings change."""
        self._clients.clear()
        self._session = None


def get_s3_client():
    return AWSClientManager().client("s3")


def get_ssm_client():
    return AWSClientManager().client("ssm")


def get_secretsmanager_client():
    return AWSClientManager().client("secretsmanager")


def get_sts_client():
    return AWSClientManager().client("sts")
