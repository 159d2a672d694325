"""Invoice models - one durable invoice per processor billing event."""

from datetime import UTC, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
  JSON,
  Column,
  DateTime,
  Float,
  ForeignKey,
  Index,
  Integer,
  String,
)
from sqlalchemy.orm import Session, relationship

from ...database import Base
from ...logger import get_logger
from ...utils.ulid import generate_prefixed_ulid

logger = get_logger(__name__)


class InvoiceStatus(str, Enum):
  """Processor invoice states."""

  DRAFT = "draft"
  OPEN = "open"
  PAID = "paid"
  VOID = "void"
  UNCOLLECTIBLE = "uncollectible"


class BillingInvoice(Base):
  """Invoice generated for a single processor billing event.

  The processor invoice id is the idempotency key: the unique constraint on
  ``stripe_invoice_id`` is what keeps concurrent runs from creating two rows.
  Supplier and customer snapshots are captured on insert and never rewritten.
  """

  __tablename__ = "invoices"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("inv"))

  stripe_invoice_id = Column(String, unique=True, nullable=False)
  stripe_payment_intent_id = Column(String, nullable=True)
  stripe_subscription_id = Column(String, nullable=True)

  invoice_number = Column(String, unique=True, nullable=False)

  business_id = Column(String, nullable=False)
  area_id = Column(String, nullable=True)
  category_id = Column(String, nullable=True)

  status = Column(String, default=InvoiceStatus.OPEN.value, nullable=False)
  currency = Column(String(3), nullable=False)

  subtotal_cents = Column(Integer, nullable=False)
  tax_cents = Column(Integer, default=0, nullable=False)
  total_cents = Column(Integer, nullable=False)

  billing_period_start = Column(DateTime, nullable=True)
  billing_period_end = Column(DateTime, nullable=True)

  supplier_name = Column(String, nullable=False)
  supplier_address = Column(String, nullable=True)
  supplier_email = Column(String, nullable=True)
  supplier_vat_number = Column(String, nullable=True)

  customer_name = Column(String, nullable=True)
  customer_email = Column(String, nullable=False)
  customer_address = Column(String, nullable=True)

  area_name = Column(String, nullable=True)
  industry_name = Column(String, nullable=True)
  area_km2 = Column(Float, nullable=True)
  rate_per_km2_cents = Column(Integer, nullable=True)

  pdf_storage_bucket = Column(String, nullable=True)
  pdf_storage_path = Column(String, nullable=True)
  pdf_signed_url = Column(String, nullable=True)

  emailed_at = Column(DateTime, nullable=True)
  email_message_id = Column(String, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)
  updated_at = Column(
    DateTime,
    default=lambda: datetime.now(UTC),
    onupdate=lambda: datetime.now(UTC),
    nullable=False,
  )

  line_items = relationship(
    "BillingInvoiceLineItem",
    back_populates="invoice",
    cascade="all, delete-orphan",
    order_by="BillingInvoiceLineItem.position",
  )

  __table_args__ = (
    Index("idx_invoice_business", "business_id"),
    Index("idx_invoice_status", "status"),
    Index("idx_invoice_period", "billing_period_start", "billing_period_end"),
  )

  def __repr__(self) -> str:
    return f"<BillingInvoice {self.invoice_number} total={self.total_cents} {self.currency}>"

  @property
  def is_emailed(self) -> bool:
    return self.emailed_at is not None

  @property
  def has_artifact(self) -> bool:
    return bool(self.pdf_storage_path)

  @classmethod
  def generate_invoice_number(
    cls, session: Session, now: Optional[datetime] = None, offset: int = 0
  ) -> str:
    """Next number in the month's sequence, INV-YYYY-MM-NNNN.

    ``offset`` skips ahead after a collision with a concurrent insert.
    """
    now = now or datetime.now(UTC)
    prefix = f"INV-{now.year}-{now.month:02d}-"

    count = session.query(cls).filter(cls.invoice_number.like(f"{prefix}%")).count()

    return f"{prefix}{count + 1 + offset:04d}"

  @classmethod
  def get_by_stripe_invoice_id(
    cls, stripe_invoice_id: str, session: Session
  ) -> Optional["BillingInvoice"]:
    """Get invoice by Stripe invoice ID."""
    return session.query(cls).filter(cls.stripe_invoice_id == stripe_invoice_id).first()

  @classmethod
  def get_by_invoice_number(
    cls, invoice_number: str, session: Session
  ) -> Optional["BillingInvoice"]:
    return session.query(cls).filter(cls.invoice_number == invoice_number).first()

  def attach_artifact(
    self, session: Session, bucket: str, path: str, signed_url: Optional[str]
  ) -> None:
    """Record where the rendered document was stored."""
    self.pdf_storage_bucket = bucket
    self.pdf_storage_path = path
    self.pdf_signed_url = signed_url
    self.updated_at = datetime.now(UTC)

    session.commit()
    session.refresh(self)

    logger.info(f"Attached stored document to invoice {self.invoice_number}")

  def mark_emailed(
    self,
    session: Session,
    message_id: Optional[str] = None,
    emailed_at: Optional[datetime] = None,
  ) -> None:
    """Mark the invoice delivered. Only called after the notifier accepted it."""
    self.emailed_at = emailed_at or datetime.now(UTC)
    self.email_message_id = message_id
    self.updated_at = datetime.now(UTC)

    session.commit()
    session.refresh(self)

    logger.info(f"Marked invoice {self.invoice_number} as emailed")


class BillingInvoiceLineItem(Base):
  """Line item for an invoice, written once when the invoice is inserted."""

  __tablename__ = "invoice_line_items"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("ili"))

  invoice_id = Column(
    String, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False
  )

  position = Column(Integer, default=0, nullable=False)
  description = Column(String, nullable=False)

  quantity = Column(Integer, default=1, nullable=False)
  unit_price_cents = Column(Integer, nullable=False)
  amount_cents = Column(Integer, nullable=False)

  period_start = Column(DateTime, nullable=True)
  period_end = Column(DateTime, nullable=True)

  line_metadata = Column(JSON, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  invoice = relationship("BillingInvoice", back_populates="line_items")

  __table_args__ = (Index("idx_invoice_line_item_invoice", "invoice_id"),)

  def __repr__(self) -> str:
    return f"<BillingInvoiceLineItem {self.description} {self.amount_cents}>"
