"""Persistence for generated invoices."""

from datetime import UTC, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...exceptions import DuplicateBillingEventError, InvoiceNumberConflictError
from ...logger import get_logger
from ...models.billing import BillingInvoice, BillingInvoiceLineItem
from .idempotency import GateDecision

logger = get_logger(__name__)

# Fields a retry may update; snapshots, number and line items stay as inserted
REFRESHABLE_FIELDS = (
  "status",
  "stripe_payment_intent_id",
  "subtotal_cents",
  "tax_cents",
  "total_cents",
  "billing_period_start",
  "billing_period_end",
  "area_name",
  "industry_name",
  "area_km2",
  "rate_per_km2_cents",
)


class InvoiceRepository:
  def __init__(self, session: Session):
    self.session = session

  def next_invoice_number(
    self, now: Optional[datetime] = None, attempt: int = 0
  ) -> str:
    """Number for a new invoice; ``attempt`` skips past numbers lost to races."""
    return BillingInvoice.generate_invoice_number(
      self.session, now=now or datetime.now(UTC), offset=attempt
    )

  def upsert(
    self,
    decision: GateDecision,
    fields: Dict[str, Any],
    line_items: List[Dict[str, Any]],
  ) -> BillingInvoice:
    """Insert on a new event, refresh in place on a retried one."""
    if decision.is_new:
      return self.create(fields, line_items)
    return self.refresh(decision.invoice, fields)

  def create(
    self, fields: Dict[str, Any], line_items: List[Dict[str, Any]]
  ) -> BillingInvoice:
    """Insert the invoice and its line items in one transaction.

    Raises:
        DuplicateBillingEventError: a concurrent run inserted the same event
        InvoiceNumberConflictError: the invoice number was taken meanwhile
    """
    stripe_invoice_id = fields["stripe_invoice_id"]

    invoice = BillingInvoice(**fields)
    for position, item in enumerate(line_items):
      invoice.line_items.append(BillingInvoiceLineItem(position=position, **item))

    self.session.add(invoice)
    try:
      self.session.commit()
    except IntegrityError:
      self.session.rollback()
      if BillingInvoice.get_by_stripe_invoice_id(stripe_invoice_id, self.session):
        logger.warning(
          f"Invoice for {stripe_invoice_id} was inserted concurrently",
          extra={"billing_event_id": stripe_invoice_id},
        )
        raise DuplicateBillingEventError(stripe_invoice_id)
      if BillingInvoice.get_by_invoice_number(fields["invoice_number"], self.session):
        raise InvoiceNumberConflictError(fields["invoice_number"])
      raise
    except SQLAlchemyError:
      self.session.rollback()
      raise

    self.session.refresh(invoice)
    logger.info(
      f"Created invoice {invoice.invoice_number} for {stripe_invoice_id}",
      extra={
        "billing_event_id": stripe_invoice_id,
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
      },
    )
    return invoice

  def refresh(self, invoice: BillingInvoice, fields: Dict[str, Any]) -> BillingInvoice:
    """Update the refreshable fields of an existing invoice."""
    for name in REFRESHABLE_FIELDS:
      if name in fields:
        setattr(invoice, name, fields[name])
    invoice.updated_at = datetime.now(UTC)

    try:
      self.session.commit()
    except SQLAlchemyError:
      self.session.rollback()
      raise

    self.session.refresh(invoice)
    logger.info(
      f"Refreshed invoice {invoice.invoice_number}",
      extra={
        "billing_event_id": invoice.stripe_invoice_id,
        "invoice_number": invoice.invoice_number,
      },
    )
    return invoice

  def attach_artifact(
    self, invoice: BillingInvoice, bucket: str, path: str, signed_url: Optional[str]
  ) -> None:
    try:
      invoice.attach_artifact(self.session, bucket, path, signed_url)
    except SQLAlchemyError:
      self.session.rollback()
      raise

  def mark_emailed(self, invoice: BillingInvoice, message_id: Optional[str]) -> None:
    try:
      invoice.mark_emailed(self.session, message_id=message_id)
    except SQLAlchemyError:
      self.session.rollback()
      raise
