"""Resolve the sponsoring business behind a billing event.

Resolution never raises for missing upstream data. It returns a Rejection
naming the first missing piece, in a fixed precedence: subscription, then
business id, then (optionally) area id, then contact email. Area and
category lookups only enrich the document and fall back to defaults.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from sqlalchemy.orm import Session

from ...logger import get_logger
from ...models.billing import (
  Business,
  Category,
  Cleaner,
  ServiceArea,
  ServiceCategory,
  SponsoredSubscription,
)
from .payment_provider import PaymentProvider
from .types import (
  BillingEvent,
  Customer,
  Rejection,
  RejectionCode,
  ResolvedContext,
  SubscriptionLink,
)

logger = get_logger(__name__)

DEFAULT_AREA_NAME = "Area"
DEFAULT_INDUSTRY_NAME = "Industry"

# Keys that older checkouts wrote the category id under on the invoice
CATEGORY_METADATA_KEYS = (
  "category_id",
  "categoryId",
  "service_category_id",
  "serviceCategoryId",
)

BUSINESS_METADATA_KEYS = ("business_id", "cleaner_id")


@dataclass(frozen=True)
class CustomerSource:
  """One place a contact email can come from, tried in list order."""

  name: str
  load: Callable[[str, Session], Optional[object]]
  email: Callable[[object], Optional[str]]
  display_name: Callable[[object], Optional[str]]
  address: Callable[[object], Optional[str]]


CUSTOMER_SOURCES: List[CustomerSource] = [
  CustomerSource(
    name="cleaners.contact_email",
    load=Cleaner.get_by_id,
    email=lambda row: row.contact_email,
    display_name=lambda row: row.business_name,
    address=lambda row: row.address,
  ),
  CustomerSource(
    name="cleaners.email",
    load=Cleaner.get_by_id,
    email=lambda row: row.email,
    display_name=lambda row: row.business_name,
    address=lambda row: row.address,
  ),
  CustomerSource(
    name="businesses.email",
    load=Business.get_by_id,
    email=lambda row: row.email,
    display_name=lambda row: row.name,
    address=lambda row: row.address,
  ),
]


def _first_value(metadata: dict, keys) -> Optional[str]:
  for key in keys:
    value = (metadata or {}).get(key)
    if value:
      return str(value)
  return None


def _optional_int(value) -> Optional[int]:
  try:
    return int(value) if value not in (None, "") else None
  except (TypeError, ValueError):
    return None


class EntityResolver:
  """Look up subscription link, customer, area and category for an event."""

  def __init__(
    self,
    session: Session,
    payment_provider: Optional[PaymentProvider] = None,
    require_area: bool = False,
    customer_sources: Optional[List[CustomerSource]] = None,
  ):
    self.session = session
    self.payment_provider = payment_provider
    self.require_area = require_area
    self.customer_sources = customer_sources or CUSTOMER_SOURCES

  def resolve(self, event: BillingEvent) -> Union[ResolvedContext, Rejection]:
    if not event.subscription_id:
      return Rejection(RejectionCode.NO_SUBSCRIPTION, "invoice has no subscription")

    link = self._subscription_link(event.subscription_id)
    if link is None or not link.business_id:
      return Rejection(
        RejectionCode.NO_BUSINESS_ID,
        f"no business linked to subscription {event.subscription_id}",
      )

    if self.require_area and not link.area_id:
      return Rejection(
        RejectionCode.NO_AREA_ID,
        f"no area linked to subscription {event.subscription_id}",
      )

    customer = self._customer(link.business_id)
    if customer is None:
      return Rejection(
        RejectionCode.NO_EMAIL, f"no contact email for business {link.business_id}"
      )

    area_name, area_km2 = self._area(link.area_id)
    category_id = link.category_id or _first_value(
      event.metadata, CATEGORY_METADATA_KEYS
    )

    return ResolvedContext(
      event=event,
      subscription=link,
      customer=customer,
      area_name=area_name,
      area_km2=area_km2,
      industry_name=self._industry(category_id),
      category_id=category_id,
    )

  def _subscription_link(self, subscription_id: str) -> Optional[SubscriptionLink]:
    row = SponsoredSubscription.get_by_stripe_subscription_id(
      subscription_id, self.session
    )
    if row is not None:
      return SubscriptionLink(
        stripe_subscription_id=subscription_id,
        business_id=row.business_id,
        area_id=row.area_id,
        category_id=row.category_id,
        slot=row.slot,
      )

    if self.payment_provider is None:
      return None

    # Checkout writes the sponsorship ids into subscription metadata before
    # the webhook creates the link row
    subscription = self.payment_provider.get_subscription(subscription_id)
    if not subscription:
      return None
    metadata = subscription.get("metadata") or {}
    logger.info(
      f"Using processor metadata for subscription {subscription_id}",
      extra={"action": "subscription_metadata_fallback"},
    )
    return SubscriptionLink(
      stripe_subscription_id=subscription_id,
      business_id=_first_value(metadata, BUSINESS_METADATA_KEYS),
      area_id=_first_value(metadata, ("area_id",)),
      category_id=_first_value(metadata, CATEGORY_METADATA_KEYS),
      slot=_optional_int(metadata.get("slot")),
      source="processor",
    )

  def _customer(self, business_id: str) -> Optional[Customer]:
    rows = {}
    for source in self.customer_sources:
      if source.load not in rows:
        rows[source.load] = source.load(business_id, self.session)
      row = rows[source.load]
      if row is None:
        continue
      email = (source.email(row) or "").strip()
      if email:
        return Customer(
          business_id=business_id,
          name=(source.display_name(row) or "").strip(),
          email=email,
          address=(source.address(row) or "").strip(),
          source=source.name,
        )
    return None

  def _area(self, area_id: Optional[str]) -> tuple[str, Optional[float]]:
    if not area_id:
      return DEFAULT_AREA_NAME, None
    area = ServiceArea.get_by_id(area_id, self.session)
    if area is None:
      logger.warning(f"Service area {area_id} not found, using default label")
      return DEFAULT_AREA_NAME, None
    return (area.name or DEFAULT_AREA_NAME), area.area_km2

  def _industry(self, category_id: Optional[str]) -> str:
    if not category_id:
      return DEFAULT_INDUSTRY_NAME
    for model in (Category, ServiceCategory):
      row = model.get_by_id(category_id, self.session)
      if row is not None and row.name:
        return row.name
    return DEFAULT_INDUSTRY_NAME
