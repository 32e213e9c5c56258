"""
S3-compatible object store (Cloudflare R2, AWS S3, MinIO, ...).

Uses the boto3 S3 client; R2 works with region 'auto' and an account
endpoint such as https://<account>.r2.cloudflarestorage.com.
"""

import logging
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from shared.constants import PRESIGNED_URL_EXPIRY
from .storage_provider import ObjectStore, StoredObject

logger = logging.getLogger(__name__)


class S3CompatibleProvider(ObjectStore):
    """Object store backed by any S3-compatible bucket."""

    def __init__(self):
        self.s3_client = None
        self.bucket_name = None
        self.endpoint_url = None
        self.public_base_url = None

    def authenticate(self, credentials: Dict[str, Any]) -> bool:
        """
        Create the S3 client and verify bucket access.

        Args:
            credentials: Must contain:
                - access_key_id: S3 access key ID
                - secret_access_key: S3 secret access key
                - bucket: Bucket name
              Optional:
                - endpoint: Endpoint URL (omit for AWS S3)
                - region: Region name, 'auto' for R2
                - public_base_url: Base URL when the bucket is served publicly
        """
        try:
            self.endpoint_url = credentials.get('endpoint') or None
            self.bucket_name = credentials['bucket']
            self.public_base_url = (credentials.get('public_base_url') or '').rstrip('/') or None

            self.s3_client = boto3.client(
                's3',
                endpoint_url=self.endpoint_url,
                aws_access_key_id=credentials['access_key_id'],
                aws_secret_access_key=credentials['secret_access_key'],
                region_name=credentials.get('region') or 'auto',
            )
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True

        except (ClientError, NoCredentialsError, BotoCoreError, KeyError) as e:
            logger.error(f"S3 authentication failed: {e}")
            return False

    def upload_bytes(self, data: bytes, remote_key: str, content_type: str,
                     metadata: Optional[Dict[str, str]] = None) -> bool:
        try:
            extra = {}
            if metadata:
                extra['Metadata'] = metadata
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=remote_key,
                Body=data,
                ContentType=content_type,
                **extra,
            )
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Upload failed for {remote_key}: {e}")
            return False

    def open(self, remote_key: str, chunk_size: int = 64 * 1024) -> Optional[StoredObject]:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=remote_key)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not open {remote_key}: {e}")
            return None

        body = response['Body']
        return StoredObject(
            key=remote_key,
            body=body.iter_chunks(chunk_size=chunk_size),
            content_length=response.get('ContentLength'),
            content_type=response.get('ContentType') or 'application/octet-stream',
            close=body.close,
        )

    def delete_file(self, remote_key: str) -> bool:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=remote_key)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Delete failed for {remote_key}: {e}")
            return False

    def file_exists(self, remote_key: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=remote_key)
            return True
        except ClientError:
            return False
        except BotoCoreError as e:
            logger.warning(f"Existence check failed for {remote_key}: {e}")
            return False

    def get_file_url(self, remote_key: str, expires_in: int = PRESIGNED_URL_EXPIRY) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{remote_key}"
        try:
            return self.s3_client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': remote_key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"URL generation failed for {remote_key}: {e}")
            return ""
