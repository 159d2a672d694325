"""Idempotency gate for billing events.

The gate reads the invoice table by processor invoice id and classifies the
event. The read is not atomic with the later insert; concurrent duplicates
are stopped by the unique constraint on ``invoices.stripe_invoice_id``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from ...models.billing import BillingInvoice


class GateStatus(str, Enum):
  NEW = "new"
  EXISTING_UNSENT = "existing-unsent"
  EXISTING_SENT = "existing-sent"


@dataclass(frozen=True)
class GateDecision:
  status: GateStatus
  invoice: Optional[BillingInvoice] = None

  @property
  def is_new(self) -> bool:
    return self.status is GateStatus.NEW


class IdempotencyGate:
  def __init__(self, session: Session):
    self.session = session

  def resolve(self, billing_event_id: str) -> GateDecision:
    """Classify a billing event by its persisted invoice, if any.

    Database errors propagate: running without the gate could double-send.
    """
    invoice = BillingInvoice.get_by_stripe_invoice_id(billing_event_id, self.session)
    if invoice is None:
      return GateDecision(GateStatus.NEW)
    if invoice.emailed_at is None:
      return GateDecision(GateStatus.EXISTING_UNSENT, invoice)
    return GateDecision(GateStatus.EXISTING_SENT, invoice)
