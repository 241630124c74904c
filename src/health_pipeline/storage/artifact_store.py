"""S3-backed Artifact Store: one bucket, fixed keys, overwritten each run."""
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from botocore.exceptions import ClientError

from health_pipeline.aws.clients import get_s3_client
from health_pipeline.pipeline.errors import StorageError

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Read and write build outputs in the deploy bucket.

    :param bucket_name: The name of the S3 bucket.
    :param region: Region used when the bucket has to be created.
    :param s3_client: An optional boto3 S3 client. If not provided, the shared one is used.
    """

    def __init__(self, bucket_name: str, region: str = "us-east-1",
                 s3_client: Optional["S3Client"] = None):
        self.bucket_name = bucket_name
        self.region = region
        self.s3_client = s3_client or get_s3_client()

    def uri(self, key: str) -> str:
        return f"s3://{self.bucket_name}/{key}"

    def put_object(self, key: str, content: bytes,
                   content_type: Optional[str] = None) -> str:
        """
        Upload bytes under ``key``, replacing any previous object.

        :param key: path to the object in the S3 bucket.
        :param content: The content of the object.
        :param content_type: The MIME type, e.g. "application/gzip".
        :return: The ``s3://`` URI of the stored object.
        """
        content_type = content_type or "application/octet-stream"
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except ClientError as e:
            raise StorageError(f"Failed to write {self.uri(key)}: {e}") from e
        logger.info(f"Stored {len(content)} bytes at {self.uri(key)}")
        return self.uri(key)

    def get_object(self, key: str) -> bytes:
        """Fetch the bytes stored under ``key``."""
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            raise StorageError(f"Failed to read {self.uri(key)}: {e}") from e
        return response["Body"].read()

    def upload_file(self, key: str, path: Union[str, Path],
                    content_type: Optional[str] = None) -> str:
        """Upload a local file under ``key``."""
        path = Path(path)
        if not path.is_file():
            raise StorageError(f"Cannot upload {path}: file not found")
        extra_args = {"ContentType": content_type} if content_type else None
        try:
            self.s3_client.upload_file(str(path), self.bucket_name, key, ExtraArgs=extra_args)
        except ClientError as e:
            raise StorageError(f"Failed to upload {path} to {self.uri(key)}: {e}") from e
        logger.info(f"Uploaded {path} to {self.uri(key)}")
        return self.uri(key)

    def download_file(self, key: str, path: Union[str, Path]) -> Path:
        """Download the object under ``key`` to a local path."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.s3_client.download_file(self.bucket_name, key, str(path))
        except ClientError as e:
            raise StorageError(f"Failed to download {self.uri(key)}: {e}") from e
        return path

    def exists(self, key: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"Failed to inspect {self.uri(key)}: {e}") from e

    def ensure_bucket(self) -> bool:
        """Create the bucket if needed. Returns True when it was created.

        The bucket is private (all public access blocked) and unversioned.
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            logger.info(f"Using existing S3 bucket: {self.bucket_name}")
            return False
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code not in ("404", "NoSuchBucket", "NotFound"):
                raise StorageError(f"Cannot access bucket {self.bucket_name}: {e}") from e

        try:
            if self.region == "us-east-1":
                self.s3_client.create_bucket(Bucket=self.bucket_name)
            else:
                self.s3_client.create_bucket(
                    Bucket=self.bucket_name,
                    CreateBucketConfiguration={"LocationConstraint": self.region},
                )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "BucketAlreadyOwnedByYou":
                logger.info(f"S3 bucket already owned by you: {self.bucket_name}")
                return False
            raise StorageError(f"Failed to create bucket {self.bucket_name}: {e}") from e

        self.s3_client.put_public_access_block(
            Bucket=self.bucket_name,
            PublicAccessBlockConfiguration={
                "BlockPublicAcls": True,
                "IgnorePublicAcls": True,
                "BlockPublicPolicy": True,
                "RestrictPublicBuckets": True,
            },
        )
        logger.info(f"Created new S3 bucket: {self.bucket_name}")
        return True
