from .billing import (
  BillingInvoice,
  BillingInvoiceLineItem,
  Business,
  Category,
  Cleaner,
  InvoiceStatus,
  ServiceArea,
  ServiceCategory,
  SponsoredSubscription,
  SubscriptionStatus,
)

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
