"""AWS service clients for invoice storage and delivery."""

from sponsorbill.operations.aws.s3 import InvoiceArtifactStore, S3Client, StoreResult
from sponsorbill.operations.aws.ses import SendResult, SESEmailService

__all__ = [
  "InvoiceArtifactStore",
  "S3Client",
  "SESEmailService",
  "SendResult",
  "StoreResult",
]
