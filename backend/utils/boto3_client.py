import io
import logging
from datetime import timedelta
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from core.config import settings

logger = logging.getLogger(__name__)

_boto3_client = None


def _endpoint_url() -> str:
    # Ensure endpoint URL has http:// or https:// prefix
    endpoint_url = settings.S3_ENDPOINT
    if not endpoint_url.startswith("http://") and not endpoint_url.startswith("https://"):
        endpoint_url = f"https://{endpoint_url}" if settings.S3_USE_SSL else f"http://{endpoint_url}"
    return endpoint_url


def get_boto3_client():
    """Lazily build the shared S3 client. Returns None if it cannot be created."""
    global _boto3_client
    if _boto3_client is not None:
        return _boto3_client
    endpoint_url = _endpoint_url()
    try:
        _boto3_client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=settings.S3_ACCESS_KEY,
            aws_secret_access_key=settings.S3_SECRET_KEY,
            region_name=settings.S3_REGION,
            # Use path-style URLs (required for MinIO)
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )
        # Basic startup info (avoid logging secrets)
        logger.info(f"S3 client initialized: endpoint={endpoint_url} bucket={settings.S3_BUCKET} region={settings.S3_REGION}")
    except (ClientError, BotoCoreError, ValueError) as e:
        logger.error(f"Failed to initialize S3/MinIO client for {endpoint_url}: {e}")
        _boto3_client = None
    return _boto3_client


def set_boto3_client(client) -> None:
    """Swap the shared client (tests inject a mock here)."""
    global _boto3_client
    _boto3_client = client


def ensure_bucket_exists(client, bucket_name: str) -> bool:
    if not client:
        logger.error("Boto3 S3 client not initialized.")
        return False
    try:
        client.head_bucket(Bucket=bucket_name)
        logger.info(f"Bucket '{bucket_name}' already exists.")
        return True
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code")
        error_message = e.response.get("Error", {}).get("Message", str(e))

        if error_code in ("404", "NoSuchBucket"):
            logger.info(f"Bucket '{bucket_name}' not found. Attempting to create it...")
            try:
                client.create_bucket(Bucket=bucket_name)
                logger.info(f"Bucket '{bucket_name}' created successfully.")
                return True
            except ClientError as create_error:
                create_error_code = create_error.response.get("Error", {}).get("Code")
                create_error_message = create_error.response.get("Error", {}).get("Message", str(create_error))
                logger.error(f"Error creating bucket '{bucket_name}': Code={create_error_code}, Message={create_error_message}")
                return False
        if error_code == "403":
            logger.error(f"Access denied to bucket '{bucket_name}'. Check S3_ACCESS_KEY and S3_SECRET_KEY.")
        else:
            logger.error(f"Error checking bucket '{bucket_name}': Code={error_code}, Message={error_message}")
        return False
    except BotoCoreError as e:
        logger.error(f"S3 bucket check failed for '{bucket_name}': {e}")
        return False


def upload_bytes(bucket_name: str, object_name: str, data: bytes, content_type: str = "application/octet-stream") -> bool:
    client = get_boto3_client()
    if not client:
        logger.error("Boto3 S3 client not initialized. Cannot upload.")
        return False
    try:
        client.upload_fileobj(
            io.BytesIO(data),
            bucket_name,
            object_name,
            ExtraArgs={"ContentType": content_type},
        )
        logger.info(f"Uploaded {object_name} to bucket {bucket_name}")
        return True
    except (ClientError, BotoCoreError) as e:
        logger.error(f"S3 Error during upload of {object_name}: {e}")
        return False


def delete_object(bucket_name: str, object_name: str) -> bool:
    client = get_boto3_client()
    if not client:
        logger.error("Boto3 S3 client not initialized. Cannot delete.")
        return False
    try:
        client.delete_object(Bucket=bucket_name, Key=object_name)
        return True
    except (ClientError, BotoCoreError) as e:
        logger.error(f"S3 Error deleting {object_name}: {e}")
        return False


def delete_prefix(bucket_name: str, prefix: str) -> int:
    """Delete every object under prefix. Returns the number of objects removed."""
    client = get_boto3_client()
    if not client:
        logger.error("Boto3 S3 client not initialized. Cannot delete.")
        return 0
    removed = 0
    try:
        paginator = client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket_name, Prefix=prefix):
            keys = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
            if not keys:
                continue
            client.delete_objects(Bucket=bucket_name, Delete={"Objects": keys, "Quiet": True})
            removed += len(keys)
    except (ClientError, BotoCoreError) as e:
        logger.error(f"S3 Error deleting prefix {prefix}: {e}")
    return removed


def get_presigned_download_url(bucket_name: str, object_name: str, expires_delta: timedelta = timedelta(hours=1)) -> Optional[str]:
    client = get_boto3_client()
    if not client:
        logger.error("Boto3 S3 client not initialized. Cannot generate URL.")
        return None
    try:
        return client.generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket_name, "Key": object_name},
            ExpiresIn=int(expires_delta.total_seconds()),
        )
    except (ClientError, BotoCoreError) as e:
        logger.error(f"S3 Error generating presigned URL for {object_name}: {e}")
        return None
