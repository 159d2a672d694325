"""
Centralized configuration package for SponsorBill.

This package provides a single source of truth for environment settings and
the invoice-specific settings derived from them.
"""

from .env import EnvConfig, env
from .invoicing import (
  InvoiceSettings,
  SponsorshipPricing,
  SponsorshipSlot,
  SupplierDetails,
)

__all__ = [
  "EnvConfig",
  "InvoiceSettings",
  "SponsorshipPricing",
  "SponsorshipSlot",
  "SupplierDetails",
  "env",
]
