"""
Custom Exception Types for SponsorBill.

Infrastructure failures in the invoice pipeline are raised as subclasses of
SponsorBillError. Expected business outcomes (missing subscription, missing
contact email, already emailed) are never raised; they are returned as
outcome codes by the pipeline.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class SponsorBillError(Exception):
  """
  Base exception for all SponsorBill application errors.

  Attributes:
      message: Human-readable error message
      error_code: Application-specific error code for categorization
      details: Additional error context and metadata
      timestamp: When the error occurred
  """

  def __init__(
    self,
    message: str,
    error_code: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
  ):
    super().__init__(message)
    self.message = message
    self.error_code = error_code or self.__class__.__name__
    self.details = details or {}
    self.timestamp = datetime.now(timezone.utc).isoformat()

  def to_dict(self) -> Dict[str, Any]:
    """Convert exception to dictionary for logs and operator tooling."""
    return {
      "error": self.error_code,
      "message": self.message,
      "details": self.details,
      "timestamp": self.timestamp,
    }


# ============================================================================
# Payment Processor Exceptions
# ============================================================================


class MalformedProcessorResponseError(SponsorBillError):
  """Raised when a processor response lacks the fields an invoice needs."""

  def __init__(self, reason: str, billing_event_id: Optional[str] = None, **kwargs):
    details = {"reason": reason}
    if billing_event_id:
      details["billing_event_id"] = billing_event_id
    details.update(kwargs)
    super().__init__(
      f"Malformed payment processor response: {reason}",
      error_code="MALFORMED_PROCESSOR_RESPONSE",
      details=details,
    )


class ExternalServiceError(SponsorBillError):
  """Raised when an external service call fails in a way callers must see."""

  def __init__(self, service: str, message: str, **kwargs):
    super().__init__(
      f"{service} error: {message}",
      error_code="EXTERNAL_SERVICE_ERROR",
      details={"service": service, **kwargs},
    )


# ============================================================================
# Document Rendering Exceptions
# ============================================================================


class DocumentRenderError(SponsorBillError):
  """Raised when an invoice document cannot be produced completely."""

  def __init__(self, message: str, invoice_number: Optional[str] = None, **kwargs):
    details = {"invoice_number": invoice_number} if invoice_number else {}
    details.update(kwargs)
    super().__init__(
      message,
      error_code="DOCUMENT_RENDER_FAILED",
      details=details,
    )


class UnsupportedCharacterError(DocumentRenderError):
  """Raised when text is measured that the document font cannot encode."""

  def __init__(self, character: str, font_name: str):
    super().__init__(
      f"Character {character!r} (U+{ord(character):04X}) is not encodable in {font_name}",
      character=character,
      font_name=font_name,
    )
    self.error_code = "UNSUPPORTED_CHARACTER"


# ============================================================================
# Persistence Exceptions
# ============================================================================


class DuplicateBillingEventError(SponsorBillError):
  """Raised when a concurrent run already inserted the invoice for an event."""

  def __init__(self, billing_event_id: str):
    super().__init__(
      f"Invoice for billing event '{billing_event_id}' already exists",
      error_code="DUPLICATE_BILLING_EVENT",
      details={"billing_event_id": billing_event_id},
    )


class InvoiceNumberConflictError(SponsorBillError):
  """Raised when another invoice took the allocated number before commit."""

  def __init__(self, invoice_number: str):
    super().__init__(
      f"Invoice number '{invoice_number}' is already in use",
      error_code="INVOICE_NUMBER_CONFLICT",
      details={"invoice_number": invoice_number},
    )


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigurationError(SponsorBillError):
  """Raised when required configuration is missing or invalid."""

  def __init__(self, problems: list[str]):
    super().__init__(
      "Invalid configuration: " + "; ".join(problems),
      error_code="CONFIGURATION_ERROR",
      details={"problems": problems},
    )
