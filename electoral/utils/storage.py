"""S3 / MinIO document storage."""

import hashlib
import uuid
from typing import Any

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from electoral.core.config import get_settings
from electoral.core.exceptions import StorageError
from electoral.core.logging_config import get_logger

logger = get_logger(__name__)


def get_s3_client() -> Any:
    """Create and return an S3 client configured for Spaces/MinIO."""
    current_settings = get_settings()
    return boto3.client(
        "s3",
        endpoint_url=current_settings.SPACES_ENDPOINT,
        aws_access_key_id=current_settings.SPACES_KEY,
        aws_secret_access_key=current_settings.SPACES_SECRET,
        region_name=current_settings.SPACES_REGION,
        config=Config(signature_version="s3v4"),
    )


def build_object_key(node_code: int, filename: str) -> str:
    """Unique key for an uploaded document, grouped by territorial node."""
    current_settings = get_settings()
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    name = f"{uuid.uuid4()}.{extension}" if extension else str(uuid.uuid4())
    return f"{current_settings.DOCUMENT_PREFIX}/{node_code}/{name}"


def store_document(
    content: bytes,
    *,
    node_code: int,
    filename: str,
    content_type: str | None = None,
) -> dict[str, str]:
    """
    Upload a document and return where it lives and its SHA-256.

    Returns:
        Dictionary with 'path' (object key) and 'content_hash'
    """
    current_settings = get_settings()
    key = build_object_key(node_code, filename)
    content_hash = hashlib.sha256(content).hexdigest()

    try:
        get_s3_client().put_object(
            Bucket=current_settings.SPACES_BUCKET,
            Key=key,
            Body=content,
            ContentType=content_type or "application/octet-stream",
            Metadata={"sha256": content_hash, "node-code": str(node_code)},
        )
    except (BotoCoreError, ClientError) as e:
        logger.error(f"Failed to store document {filename}: {e}")
        raise StorageError("Document storage is unavailable") from e

    logger.info(f"Stored document {key} ({len(content)} bytes)")
    return {"path": key, "content_hash": content_hash}


def delete_document(path: str) -> None:
    """Remove a stored document by its object key."""
    current_settings = get_settings()
    try:
        get_s3_client().delete_object(Bucket=current_settings.SPACES_BUCKET, Key=path)
    except (BotoCoreError, ClientError) as e:
        logger.error(f"Failed to delete document {path}: {e}")
        raise StorageError("Document storage is unavailable") from e

    logger.info(f"Deleted document {path}")


def ensure_bucket_exists() -> None:
    """Create the document bucket when it is missing (MinIO setups)."""
    current_settings = get_settings()
    s3_client = get_s3_client()

    try:
        s3_client.head_bucket(Bucket=current_settings.SPACES_BUCKET)
        logger.info(f"Bucket exists: {current_settings.SPACES_BUCKET}")
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "")
        if error_code in ("404", "NoSuchBucket"):
            s3_client.create_bucket(Bucket=current_settings.SPACES_BUCKET)
            logger.info(f"Created bucket: {current_settings.SPACES_BUCKET}")
        else:
            logger.error(f"Error checking bucket {current_settings.SPACES_BUCKET}: {e}")
            raise
