"""
S3 adapter for invoice document storage.
"""

import time
from dataclasses import dataclass
from typing import Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from sponsorbill.config import env
from sponsorbill.logger import logger

# SigV4 presigned URLs cannot outlive seven days
MAX_PRESIGNED_URL_TTL = 7 * 24 * 3600


class S3Client:
  """
  General-purpose S3 client.

  Uploads retry with exponential backoff; access and bucket errors are not
  retried.
  """

  def __init__(
    self, region_name: Optional[str] = None, endpoint_url: Optional[str] = None
  ):
    """
    Initialize S3 client.

    Args:
        region_name: AWS region (defaults to env.AWS_DEFAULT_REGION)
        endpoint_url: Custom endpoint URL (e.g., for LocalStack)
    """
    self.region_name = region_name or env.AWS_DEFAULT_REGION
    self.endpoint_url = endpoint_url or env.AWS_ENDPOINT_URL or None

    s3_config = {
      "region_name": self.region_name,
      "endpoint_url": self.endpoint_url,
    }

    # In production/staging boto3 picks up the task role
    if env.ENVIRONMENT in ["prod", "staging"]:
      logger.debug("Using IAM role for S3 access (production/staging)")
    elif env.AWS_S3_ACCESS_KEY_ID:
      logger.debug("Using access keys for S3 access (development)")
      s3_config["aws_access_key_id"] = env.AWS_S3_ACCESS_KEY_ID
      if env.AWS_S3_SECRET_ACCESS_KEY:
        s3_config["aws_secret_access_key"] = env.AWS_S3_SECRET_ACCESS_KEY
    else:
      logger.debug("Using default AWS credentials chain for S3 access")

    self.s3_client = boto3.client("s3", **s3_config)

    logger.debug(f"Initialized S3Client for region {self.region_name}")

  def upload_bytes(
    self,
    content: bytes,
    bucket: str,
    key: str,
    content_type: Optional[str] = None,
    metadata: Optional[Dict[str, str]] = None,
    max_retries: int = 3,
  ) -> bool:
    """
    Upload bytes as an S3 object with retry logic.

    Uploading to the same key overwrites the previous object.

    Args:
        content: Object body
        bucket: S3 bucket name
        key: S3 object key
        content_type: MIME type for the content
        metadata: Additional metadata for the object
        max_retries: Maximum number of attempts (default: 3)

    Returns:
        True if successful, False otherwise
    """
    put_args = {
      "Bucket": bucket,
      "Key": key,
      "Body": content,
    }

    if content_type:
      put_args["ContentType"] = content_type

    if metadata:
      put_args["Metadata"] = metadata

    non_retryable = {"AccessDenied", "InvalidBucketName", "NoSuchBucket"}
    security_errors = {"AccessDenied", "UnauthorizedAccess", "TokenRefreshRequired"}

    for attempt in range(max_retries):
      try:
        self.s3_client.put_object(**put_args)

        logger.debug(f"Successfully uploaded {len(content)} bytes to s3://{bucket}/{key}")
        return True

      except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "")

        if error_code in security_errors:
          logger.critical(
            f"S3 SECURITY VIOLATION - {error_code}: Bucket={bucket}, Key={key}, "
            f"Error={str(e)}, Attempt={attempt + 1}"
          )
          return False

        if error_code in non_retryable:
          logger.error(f"Non-retryable S3 error {error_code}: {e}")
          return False

        if attempt == max_retries - 1:
          logger.error(f"Failed to upload to S3 after {max_retries} attempts: {e}")
          return False

        # Exponential backoff: 1, 2, 4 seconds
        wait_time = 2**attempt
        logger.warning(
          f"S3 upload attempt {attempt + 1} failed, retrying in {wait_time}s: {e}"
        )
        time.sleep(wait_time)

      except Exception as e:
        logger.error(f"Unexpected error uploading to S3: {e}")
        return False

    return False

  def generate_presigned_url(
    self, bucket: str, key: str, expires_in: int = 3600
  ) -> Optional[str]:
    """
    Generate a presigned GET URL.

    Args:
        bucket: S3 bucket name
        key: S3 object key
        expires_in: Lifetime in seconds, clamped to the SigV4 maximum

    Returns:
        The URL, or None if signing failed
    """
    expires_in = max(1, min(int(expires_in), MAX_PRESIGNED_URL_TTL))
    try:
      return self.s3_client.generate_presigned_url(
        "get_object",
        Params={"Bucket": bucket, "Key": key},
        ExpiresIn=expires_in,
      )
    except (ClientError, BotoCoreError) as e:
      logger.error(f"Failed to sign s3://{bucket}/{key}: {e}")
      return None


@dataclass(frozen=True)
class StoreResult:
  ok: bool
  bucket: Optional[str] = None
  path: Optional[str] = None
  error: Optional[str] = None


class InvoiceArtifactStore:
  """Stores rendered invoices under a deterministic key per invoice number."""

  def __init__(self, s3_client: S3Client, bucket: str, prefix: str = ""):
    self.s3_client = s3_client
    self.bucket = bucket
    self.prefix = prefix.strip("/")

  def path_for(self, business_id: str, invoice_number: str) -> str:
    """``[prefix/]business_id/invoice_number.pdf``; retries overwrite in place."""
    parts = [self.prefix, business_id, f"{invoice_number}.pdf"]
    return "/".join(part for part in parts if part)

  def store(self, data: bytes, path: str) -> StoreResult:
    ok = self.s3_client.upload_bytes(
      data,
      self.bucket,
      path,
      content_type="application/pdf",
    )
    if not ok:
      return StoreResult(
        ok=False, error=f"upload to s3://{self.bucket}/{path} failed"
      )
    return StoreResult(ok=True, bucket=self.bucket, path=path)

  def sign(self, path: str, ttl: int) -> Optional[str]:
    return self.s3_client.generate_presigned_url(self.bucket, path, expires_in=ttl)
