"""
MinIO File Storage for quote documents

This module provides a small interface to MinIO object storage using the
S3-compatible API via boto3. Documents are addressed by opaque string paths
(object keys inside the configured bucket).

Key Operations:
---------------
- upload_bytes: stores raw bytes under ``uploads/<timestamp>-<rand>.<ext>``
- download_bytes: fetches an object's bytes
- delete_object: deletes an object (missing objects are not an error)

The boto3 client is created lazily so importing this module never needs
storage credentials.
"""

import time
import uuid
import threading
from os.path import splitext
from typing import Optional

import boto3
from botocore.exceptions import ClientError
from botocore.config import Config as BotoConfig

from utils.vault import secrets
from utils.core.log import get_logger
from utils.core.errors import StorageError


# Pooling + retries
S3_BOTOCORE_CONFIG = BotoConfig(
    max_pool_connections=32,
    retries={"max_attempts": 10, "mode": "adaptive"},
)

UPLOAD_PREFIX = "uploads"

_CLIENT = None
_LOCK = threading.Lock()


def _minio_settings() -> dict:
    # MinIO config from Vault/env. Only these keys are used:
    #   minio_bucket, minio_endpoint, minio_root_password, minio_root_user, minio_secure
    endpoint = (secrets.get("minio_endpoint", default="") or "").strip().rstrip("/")
    return {
        "access_key": (secrets.get("minio_root_user", default="") or "").strip(),
        "secret_key": (secrets.get("minio_root_password", default="") or "").strip(),
        "endpoint": endpoint or "http://minio:9000",
        "bucket": (secrets.get("minio_bucket", default="") or "").strip() or "quotes",
        "secure": (secrets.get("minio_secure", default="") or "").strip().lower() == "true",
    }


def get_client():
    global _CLIENT
    if _CLIENT is None:
        with _LOCK:
            if _CLIENT is None:
                cfg = _minio_settings()
                _CLIENT = boto3.client(
                    "s3",
                    endpoint_url=cfg["endpoint"],
                    aws_access_key_id=cfg["access_key"],
                    aws_secret_access_key=cfg["secret_key"],
                    use_ssl=cfg["secure"],
                    config=S3_BOTOCORE_CONFIG,
                )
    return _CLIENT


def bucket_name() -> str:
    return _minio_settings()["bucket"]


def _object_key(filename: str) -> str:
    ext = splitext(filename or "")[1].lower().lstrip(".") or "bin"
    return f"{UPLOAD_PREFIX}/{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{ext}"


def upload_bytes(data: bytes, filename: str, content_type: Optional[str] = None) -> str:
    """
    Upload raw bytes and return the generated object path.

    Raises:
        StorageError: the upload failed
    """
    logger = get_logger()
    key = _object_key(filename)
    extra = {"ContentType": content_type} if content_type else {}
    try:
        get_client().put_object(Bucket=bucket_name(), Key=key, Body=data, **extra)
    except ClientError as e:
        logger.error(f"Failed to upload {filename} to minio://{bucket_name()}/{key}: {e}")
        raise StorageError(f"Could not upload file: {filename}") from e
    logger.debug(f"Uploaded {len(data)} bytes to minio://{bucket_name()}/{key}")
    return key


def download_bytes(path: str) -> bytes:
    """
    Fetch an object's content.

    Raises:
        StorageError: object missing or storage unreachable
    """
    logger = get_logger()
    try:
        resp = get_client().get_object(Bucket=bucket_name(), Key=path)
        data = resp["Body"].read()
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        if code in ("NoSuchKey", "404"):
            logger.warning(f"File not found at minio://{bucket_name()}/{path}")
            raise StorageError(f"File not found: {path}") from e
        logger.error(f"Failed to download minio://{bucket_name()}/{path}: {e}")
        raise StorageError(f"Could not download file: {path}") from e
    logger.debug(f"Downloaded {len(data)} bytes from minio://{bucket_name()}/{path}")
    return data


def delete_object(path: str) -> bool:
    """
    Delete file from MinIO storage.

    Returns:
        True if deletion successful, False otherwise
    """
    logger = get_logger()
    try:
        get_client().delete_object(Bucket=bucket_name(), Key=path)
        logger.debug(f"Deleted minio://{bucket_name()}/{path}")
        return True
    except ClientError as e:
        logger.error(f"Failed to delete file from MinIO: {e}")
        return False


def main() -> bool:
    from utils.core.log import scope_tool_logger, set_logger

    set_logger(scope_tool_logger("system_check", "bucket_test"))

    payload = b"quote storage check"
    key = upload_bytes(payload, "check.txt", content_type="text/plain")
    try:
        if download_bytes(key) != payload:
            raise ValueError("Downloaded bytes differ from uploaded bytes")
    finally:
        delete_object(key)
    print("BUCKET TEST OK")
    return True


if __name__ == "__main__":
    main()
