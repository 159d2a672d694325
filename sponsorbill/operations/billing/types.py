"""Value types passed between the invoice pipeline stages."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ...config.invoicing import SupplierDetails
from ...exceptions import MalformedProcessorResponseError
from ...utils.formatting import from_unix


# ============================================================================
# Processor billing events
# ============================================================================


def _reference(value: Any) -> Optional[str]:
  """Processor references arrive either as ids or as expanded objects."""
  if value is None:
    return None
  if isinstance(value, dict):
    value = value.get("id")
  return str(value) if value else None


def _amount(data: Dict[str, Any], key: str, event_id: Optional[str]) -> Optional[int]:
  value = data.get(key)
  if value is None:
    return None
  if isinstance(value, bool) or not isinstance(value, int):
    raise MalformedProcessorResponseError(
      f"'{key}' must be an integer amount in minor units",
      billing_event_id=event_id,
      value=repr(value),
    )
  return value


def _tax_amount(data: Dict[str, Any], event_id: Optional[str]) -> Optional[int]:
  """Tax from the legacy ``tax`` field or the summed tax breakdown."""
  if data.get("tax") is not None:
    return _amount(data, "tax", event_id)
  for key in ("total_taxes", "total_tax_amounts"):
    entries = data.get(key)
    if entries:
      return sum(_amount(entry, "amount", event_id) or 0 for entry in entries)
  return None


def _subscription_reference(data: Dict[str, Any]) -> Optional[str]:
  reference = _reference(data.get("subscription"))
  if reference:
    return reference
  parent = data.get("parent") or {}
  details = parent.get("subscription_details") or {}
  return _reference(details.get("subscription"))


@dataclass(frozen=True)
class BillingLineItem:
  """One processor line item, amounts in minor units."""

  id: Optional[str]
  description: str
  amount: int
  quantity: int = 1
  period_start: Optional[datetime] = None
  period_end: Optional[datetime] = None
  proration: bool = False

  @property
  def unit_amount(self) -> int:
    if self.quantity and self.quantity > 0:
      return self.amount // self.quantity
    return self.amount

  @classmethod
  def from_processor(
    cls, data: Dict[str, Any], event_id: Optional[str] = None
  ) -> "BillingLineItem":
    amount = _amount(data, "amount", event_id)
    if amount is None:
      raise MalformedProcessorResponseError(
        "line item without an amount",
        billing_event_id=event_id,
        line_item_id=data.get("id"),
      )
    period = data.get("period") or {}
    quantity = data.get("quantity")
    return cls(
      id=data.get("id"),
      description=(data.get("description") or "").strip(),
      amount=amount,
      quantity=quantity if isinstance(quantity, int) and quantity > 0 else 1,
      period_start=from_unix(period.get("start")),
      period_end=from_unix(period.get("end")),
      proration=bool(data.get("proration")),
    )


@dataclass(frozen=True)
class BillingEvent:
  """Immutable view of a processor invoice."""

  id: str
  subscription_id: Optional[str]
  payment_intent_id: Optional[str]
  currency: str
  status: Optional[str]
  subtotal: Optional[int]
  tax: Optional[int]
  total: Optional[int]
  amount_due: Optional[int]
  created: Optional[datetime]
  period_start: Optional[datetime]
  period_end: Optional[datetime]
  metadata: Dict[str, str] = field(default_factory=dict)
  lines: List[BillingLineItem] = field(default_factory=list)
  # Set when the processor holds more lines than were listed
  lines_truncated: bool = False
  omitted_line_count: Optional[int] = None

  @property
  def billing_period(self) -> tuple[Optional[datetime], Optional[datetime]]:
    """Service period of the first line, falling back to the invoice period."""
    for line in self.lines:
      if line.period_start or line.period_end:
        return line.period_start, line.period_end
    return self.period_start, self.period_end

  @classmethod
  def from_processor(
    cls, data: Dict[str, Any], lines: Optional[List[Dict[str, Any]]] = None
  ) -> "BillingEvent":
    """Build an event from a processor invoice and its listed line items.

    Raises:
        MalformedProcessorResponseError: missing id or non-integer amounts
    """
    if not isinstance(data, dict):
      raise MalformedProcessorResponseError("invoice payload is not an object")

    event_id = data.get("id")
    if not event_id or not isinstance(event_id, str):
      raise MalformedProcessorResponseError("invoice without an id")

    if lines is None:
      lines = (data.get("lines") or {}).get("data") or []

    return cls(
      id=event_id,
      subscription_id=_subscription_reference(data),
      payment_intent_id=_reference(data.get("payment_intent")),
      currency=(data.get("currency") or "gbp").lower(),
      status=data.get("status"),
      subtotal=_amount(data, "subtotal", event_id),
      tax=_tax_amount(data, event_id),
      total=_amount(data, "total", event_id),
      amount_due=_amount(data, "amount_due", event_id),
      created=from_unix(data.get("created")),
      period_start=from_unix(data.get("period_start")),
      period_end=from_unix(data.get("period_end")),
      metadata={str(k): str(v) for k, v in (data.get("metadata") or {}).items()},
      lines=[BillingLineItem.from_processor(line, event_id) for line in lines],
    )


# ============================================================================
# Resolution results
# ============================================================================


class RejectionCode(str, Enum):
  """Named terminal outcomes for incomplete upstream data."""

  NO_SUBSCRIPTION = "no-subscription"
  NO_BUSINESS_ID = "no-business-id"
  NO_AREA_ID = "no-area-id"
  NO_EMAIL = "no-email"


@dataclass(frozen=True)
class Rejection:
  code: RejectionCode
  detail: str = ""


@dataclass(frozen=True)
class SubscriptionLink:
  """Sponsorship identifiers behind a processor subscription."""

  stripe_subscription_id: str
  business_id: Optional[str]
  area_id: Optional[str] = None
  category_id: Optional[str] = None
  slot: Optional[int] = None
  source: str = "sponsored_subscriptions"


@dataclass(frozen=True)
class Customer:
  business_id: str
  name: str
  email: str
  address: str = ""
  source: str = ""


@dataclass(frozen=True)
class ResolvedContext:
  """Everything the resolver found for one billing event."""

  event: BillingEvent
  subscription: SubscriptionLink
  customer: Customer
  area_name: str = "Area"
  area_km2: Optional[float] = None
  industry_name: str = "Industry"
  category_id: Optional[str] = None


# ============================================================================
# Money
# ============================================================================


@dataclass(frozen=True)
class MonetaryBreakdown:
  """Authoritative amounts plus the presentation-only area metric."""

  currency: str
  subtotal_cents: int
  tax_cents: int
  total_cents: int
  line_amount_cents: int
  rate_per_km2_cents: int
  area_km2: float


# ============================================================================
# Documents
# ============================================================================


@dataclass(frozen=True)
class DocumentLine:
  description: str
  amount_cents: int
  area_km2: Optional[float] = None
  rate_per_km2_cents: Optional[int] = None
  proration: bool = False
  summary: bool = False


@dataclass(frozen=True)
class InvoiceSnapshot:
  """Renderer input: a fully resolved invoice, independent of storage."""

  invoice_number: str
  issued_on: date
  currency: str
  supplier: SupplierDetails
  customer_name: str
  customer_email: str
  customer_address: str
  industry_name: str
  area_name: str
  lines: List[DocumentLine]
  subtotal_cents: int
  tax_cents: int
  total_cents: int
  period_start: Optional[datetime] = None
  period_end: Optional[datetime] = None
  vat_rate: float = 0.0
  processor_reference: Optional[str] = None
  logo: Optional[bytes] = None


@dataclass(frozen=True)
class TextRun:
  """A piece of text drawn on a page, kept for inspection."""

  page: int
  x: float
  y: float
  text: str
  font: str
  size: float


@dataclass(frozen=True)
class RenderedDocument:
  content: bytes
  page_count: int
  text_runs: List[TextRun] = field(default_factory=list)

  def page_text(self, page: int) -> List[str]:
    return [run.text for run in self.text_runs if run.page == page]
