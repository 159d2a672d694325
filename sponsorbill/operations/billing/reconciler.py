"""Monetary reconciliation for a billing event.

Processor amounts are authoritative. The reconciler only chooses between the
fields the processor sent and derives the area-covered figure printed on the
invoice, which never feeds back into any total.
"""

from typing import Optional

from ...config.invoicing import SponsorshipPricing
from ...exceptions import MalformedProcessorResponseError
from ...logger import get_logger
from .types import BillingEvent, MonetaryBreakdown

logger = get_logger(__name__)


class MonetaryReconciler:
  def __init__(self, pricing: SponsorshipPricing):
    self.pricing = pricing

  def reconcile(
    self,
    event: BillingEvent,
    slot: Optional[int] = None,
    stored_area_km2: Optional[float] = None,
  ) -> MonetaryBreakdown:
    """Pick subtotal, tax and total from the event.

    Total priority is ``total``, then ``subtotal + tax``, then ``amount_due``.

    Raises:
        MalformedProcessorResponseError: none of the total sources is present
    """
    tax = event.tax if event.tax is not None else 0

    if event.total is not None:
      total = event.total
    elif event.subtotal is not None:
      total = event.subtotal + tax
    elif event.amount_due is not None:
      total = event.amount_due
    else:
      raise MalformedProcessorResponseError(
        "invoice has no total, subtotal or amount_due", billing_event_id=event.id
      )

    subtotal = event.subtotal if event.subtotal is not None else total - tax

    if event.total is not None and event.subtotal is not None:
      if event.total != event.subtotal + tax:
        # Discounts and credits make these differ; the processor total stands
        logger.warning(
          f"Invoice {event.id} total {event.total} differs from "
          f"subtotal {event.subtotal} + tax {tax}",
          extra={"billing_event_id": event.id, "action": "total_mismatch"},
        )

    line_amount = event.lines[0].amount if event.lines else subtotal
    rate = self.pricing.rate_for_slot(slot)

    return MonetaryBreakdown(
      currency=event.currency,
      subtotal_cents=subtotal,
      tax_cents=tax,
      total_cents=total,
      line_amount_cents=line_amount,
      rate_per_km2_cents=rate,
      area_km2=self.area_covered(line_amount, rate, stored_area_km2),
    )

  @staticmethod
  def area_covered(
    line_amount_cents: int, rate_per_km2_cents: int, stored_area_km2: Optional[float]
  ) -> float:
    """Stored area when known, otherwise back-computed from the charged amount."""
    if stored_area_km2 is not None and stored_area_km2 > 0:
      return round(float(stored_area_km2), 3)
    if rate_per_km2_cents <= 0:
      return 0.0
    return round(max(line_amount_cents, 0) / rate_per_km2_cents, 3)
