import os
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class StorageBackend:
    """
    Read side of the portrait asset store.

    Fulfillment only needs to hand print-ready masters to the print provider,
    so the interface is limited to resolving a storage key to a fetchable URL.
    """
    def get_url(self, key, expires_seconds=3600):
        raise NotImplementedError


class LocalStorage(StorageBackend):
    def __init__(self, base_dir, base_url):
        self.base_dir = base_dir
        self.base_url = base_url.rstrip("/")

    def _get_abs_path(self, key):
        # Keys are relative ("portraits/abc123.png"); refuse anything escaping base_dir
        abs_path = os.path.abspath(os.path.join(self.base_dir, key))
        if not abs_path.startswith(os.path.abspath(self.base_dir) + os.sep):
            raise ValueError(f"Storage key escapes base directory: {key}")
        return abs_path

    def get_url(self, key, expires_seconds=3600):
        self._get_abs_path(key)
        return f"{self.base_url}/{key.lstrip('/')}".replace("\\", "/")


class S3Storage(StorageBackend):
    def __init__(self, bucket_name, region, access_key, secret_key, prefix=""):
        self.s3 = boto3.client(
            's3',
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key
        )
        self.bucket = bucket_name
        self.prefix = prefix

    def _get_s3_key(self, key):
        if self.prefix:
            return f"{self.prefix.rstrip('/')}/{key.lstrip('/')}"
        return key

    def get_url(self, key, expires_seconds=3600):
        full_key = self._get_s3_key(key)
        try:
            return self.s3.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket, 'Key': full_key},
                ExpiresIn=expires_seconds
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"[Storage] Error generating presigned URL for {full_key}: {e}")
            return ""


def get_storage():
    """Factory to return the configured storage backend."""
    from config import STORAGE_BACKEND, S3_BUCKET, AWS_REGION, LOCAL_STORAGE_DIR, BASE_URL, S3_PREFIX

    if STORAGE_BACKEND == 's3':
        access_key = os.environ.get('AWS_ACCESS_KEY_ID')
        secret_key = os.environ.get('AWS_SECRET_ACCESS_KEY')

        if not access_key or not secret_key:
            # IAM role credentials are picked up by boto3 when these are None
            logger.warning("[Storage] S3 backend selected but AWS credentials missing from environment.")

        return S3Storage(S3_BUCKET, AWS_REGION, access_key, secret_key, prefix=S3_PREFIX)

    return LocalStorage(LOCAL_STORAGE_DIR, f"{BASE_URL}/storage")
