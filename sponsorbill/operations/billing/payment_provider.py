"""Payment provider abstraction layer.

The invoice pipeline only reads from the processor: the invoice that
triggered the run, its line items, and (when no local link row exists) the
subscription behind it. Responses are converted to plain dicts so nothing
downstream depends on processor object types.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ...config import env
from ...exceptions import ExternalServiceError
from ...logger import get_logger

logger = get_logger(__name__)


def _to_plain(obj: Any) -> Any:
  """Recursively convert processor objects into dicts and lists."""
  if hasattr(obj, "to_dict_recursive"):
    return obj.to_dict_recursive()
  if hasattr(obj, "to_dict"):
    return _to_plain(obj.to_dict())
  if isinstance(obj, dict):
    return {key: _to_plain(value) for key, value in obj.items()}
  if isinstance(obj, list):
    return [_to_plain(value) for value in obj]
  return obj


class PaymentProvider(ABC):
  """Abstract payment provider interface."""

  @abstractmethod
  def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
    """Retrieve an invoice.

    Args:
        invoice_id: Provider invoice ID

    Returns:
        Invoice as a plain dict (amounts in minor units)
    """
    pass

  @abstractmethod
  def list_line_items(self, invoice_id: str, limit: int = 100) -> List[Dict[str, Any]]:
    """List the line items of an invoice.

    Args:
        invoice_id: Provider invoice ID
        limit: Maximum number of line items to return

    Returns:
        Line items as plain dicts, in provider order
    """
    pass

  @abstractmethod
  def get_subscription(self, subscription_id: str) -> Optional[Dict[str, Any]]:
    """Retrieve a subscription.

    Args:
        subscription_id: Provider subscription ID

    Returns:
        Subscription as a plain dict, or None if it does not exist
    """
    pass


class StripePaymentProvider(PaymentProvider):
  """Stripe implementation of payment provider."""

  def __init__(self):
    """Initialize Stripe with API key from environment."""
    import stripe

    stripe.api_key = env.STRIPE_SECRET_KEY
    stripe.api_version = env.STRIPE_API_VERSION
    self.stripe = stripe
    logger.info("Initialized Stripe payment provider")

  def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
    """Retrieve a Stripe invoice."""
    try:
      invoice = self.stripe.Invoice.retrieve(invoice_id)
      logger.debug(
        f"Retrieved Stripe invoice {invoice_id}",
        extra={"billing_event_id": invoice_id},
      )
      return _to_plain(invoice)
    except self.stripe.error.StripeError as e:
      logger.error(f"Failed to retrieve invoice {invoice_id}: {e}", exc_info=True)
      raise ExternalServiceError(
        "stripe", str(e), operation="get_invoice", invoice_id=invoice_id
      ) from e

  def list_line_items(self, invoice_id: str, limit: int = 100) -> List[Dict[str, Any]]:
    """List line items for a Stripe invoice, following pagination up to ``limit``."""
    try:
      lines = self.stripe.Invoice.list_lines(invoice_id, limit=min(limit, 100))
      items = []
      for line in lines.auto_paging_iter():
        items.append(_to_plain(line))
        if len(items) >= limit:
          break

      logger.debug(
        f"Listed {len(items)} line items for invoice {invoice_id}",
        extra={"billing_event_id": invoice_id},
      )
      return items
    except self.stripe.error.StripeError as e:
      logger.error(
        f"Failed to list line items for invoice {invoice_id}: {e}", exc_info=True
      )
      raise ExternalServiceError(
        "stripe", str(e), operation="list_line_items", invoice_id=invoice_id
      ) from e

  def get_subscription(self, subscription_id: str) -> Optional[Dict[str, Any]]:
    """Retrieve a Stripe subscription, or None when Stripe has no such id."""
    try:
      subscription = self.stripe.Subscription.retrieve(subscription_id)
      return _to_plain(subscription)
    except self.stripe.error.InvalidRequestError as e:
      if getattr(e, "code", None) == "resource_missing":
        logger.warning(f"Stripe subscription {subscription_id} not found")
        return None
      logger.error(f"Failed to retrieve subscription: {e}", exc_info=True)
      raise
    except Exception as e:
      logger.error(f"Failed to retrieve subscription: {e}", exc_info=True)
      raise


def get_payment_provider(provider_name: str = "stripe") -> PaymentProvider:
  """Factory function to get payment provider instance.

  Args:
      provider_name: Name of payment provider (default: "stripe")

  Returns:
      PaymentProvider implementation

  Raises:
      ValueError: Unknown provider name
  """
  if provider_name == "stripe":
    return StripePaymentProvider()
  else:
    raise ValueError(f"Unknown payment provider: {provider_name}")
