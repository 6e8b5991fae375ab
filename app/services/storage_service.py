"""Storage service for evidence files on S3/MinIO."""
import logging
import os
import re
import uuid
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import settings

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _storage_disabled() -> bool:
    """S3 is skipped entirely when running against SQLite (tests, local demos)."""
    database_url = os.environ.get("DATABASE_URL", settings.DATABASE_URL).lower()
    return "sqlite" in database_url


class StorageError(Exception):
    """S3/MinIO operation failed."""


class StorageService:
    """Presigned URLs for evidence uploads and downloads."""

    def __init__(self):
        """Initialize S3 client."""
        self.bucket_name = settings.S3_BUCKET_NAME
        self.s3_client = None
        if _storage_disabled():
            return

        self.s3_client = boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            region_name=settings.S3_REGION,
            use_ssl=settings.S3_USE_SSL,
            config=Config(signature_version="s3v4"),
        )

    @staticmethod
    def evidence_key(organization_id, task_id, filename: str) -> str:
        """Object key for a new evidence file; never reuses an existing key."""
        safe_name = _UNSAFE_FILENAME_RE.sub("_", filename).strip("._") or "evidence"
        return f"evidence/{organization_id}/{task_id}/{uuid.uuid4().hex}_{safe_name}"

    def generate_upload_url(
        self,
        key: str,
        content_type: str,
        expires_in: int = 3600,
    ) -> str:
        """Generate presigned URL for uploading a file (PUT)."""
        if self.s3_client is None:
            return f"http://localhost:9000/{self.bucket_name}/{key}"
        try:
            return self.s3_client.generate_presigned_url(
                "put_object",
                Params={
                    "Bucket": self.bucket_name,
                    "Key": key,
                    "ContentType": content_type,
                },
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Error generating upload URL: {str(e)}") from e

    def generate_download_url(
        self,
        key: str,
        expires_in: int = 3600,
    ) -> str:
        """Generate presigned URL for downloading a file (GET)."""
        if self.s3_client is None:
            return f"http://localhost:9000/{self.bucket_name}/{key}"
        try:
            return self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Error generating download URL: {str(e)}") from e

    def check_bucket(self) -> Optional[str]:
        """Return None when the bucket is reachable, otherwise the error text."""
        if self.s3_client is None:
            return None
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return None
        except (ClientError, BotoCoreError) as e:
            logger.warning("Evidence bucket check failed: %s", e)
            return str(e)


# Global instance
storage_service = StorageService()
