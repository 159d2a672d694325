"""Billing models package.

Directory tables (customers, areas, categories, subscription links) are read
by the invoice pipeline; the invoice tables are owned by it.
"""

from .catalog import Category, ServiceArea, ServiceCategory
from .customer import Business, Cleaner
from .invoice import (
  BillingInvoice,
  BillingInvoiceLineItem,
  InvoiceStatus,
)
from .subscription import SponsoredSubscription, SubscriptionStatus

__all__ = [
  "BillingInvoice",
  "BillingInvoiceLineItem",
  "Business",
  "Category",
  "Cleaner",
  "InvoiceStatus",
  "ServiceArea",
  "ServiceCategory",
  "SponsoredSubscription",
  "SubscriptionStatus",
]
