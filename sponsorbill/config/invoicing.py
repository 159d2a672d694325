"""Invoice settings assembled from the environment.

Supplier identity, sponsorship pricing and delivery options are read once per
pipeline construction so a long-running worker picks up redeployed values.
"""

from dataclasses import dataclass, field
from email.utils import parseaddr
from enum import IntEnum
from typing import Dict, Optional

from .env import EnvConfig, env


class SponsorshipSlot(IntEnum):
  """Sponsorship tiers by slot number."""

  GOLD = 1
  SILVER = 2
  BRONZE = 3

  @classmethod
  def from_value(cls, value) -> "SponsorshipSlot":
    """Map a stored slot to its tier; anything unrecognised is Bronze."""
    try:
      return cls(int(value))
    except (TypeError, ValueError):
      return cls.BRONZE


@dataclass(frozen=True)
class SponsorshipPricing:
  """Rates per km2 per month in minor units."""

  default_rate_cents: int = 100
  slot_rates: Dict[SponsorshipSlot, int] = field(default_factory=dict)

  def rate_for_slot(self, slot) -> int:
    """Rate for a slot, falling back to the default rate."""
    if slot is None:
      return self.default_rate_cents
    tier = SponsorshipSlot.from_value(slot)
    rate = self.slot_rates.get(tier)
    if rate is None or rate <= 0:
      return self.default_rate_cents
    return rate

  @classmethod
  def from_env(cls, config: EnvConfig = env) -> "SponsorshipPricing":
    rates = {
      SponsorshipSlot.GOLD: config.RATE_GOLD_PER_KM2_PER_MONTH,
      SponsorshipSlot.SILVER: config.RATE_SILVER_PER_KM2_PER_MONTH,
      SponsorshipSlot.BRONZE: config.RATE_BRONZE_PER_KM2_PER_MONTH,
    }
    return cls(
      default_rate_cents=config.RATE_PER_KM2_PER_MONTH,
      slot_rates={slot: rate for slot, rate in rates.items() if rate is not None},
    )


@dataclass(frozen=True)
class SupplierDetails:
  """Identity printed on every invoice and used as the email sender."""

  name: str
  address: str
  email: str
  vat_number: str
  sender: str

  @classmethod
  def from_env(cls, config: EnvConfig = env) -> "SupplierDetails":
    sender = config.INVOICE_FROM_EMAIL.strip()
    _, sender_address = parseaddr(sender)
    return cls(
      name=config.INVOICE_SUPPLIER_NAME,
      address=config.INVOICE_SUPPLIER_ADDRESS,
      email=config.INVOICE_SUPPLIER_EMAIL or sender_address,
      vat_number=config.INVOICE_SUPPLIER_VAT,
      sender=sender,
    )


@dataclass(frozen=True)
class InvoiceSettings:
  """Everything the invoice pipeline needs from configuration."""

  supplier: SupplierDetails
  pricing: SponsorshipPricing
  vat_rate: float = 0.0
  logo_url: Optional[str] = None
  logo_timeout: float = 5.0
  store_pdf: bool = True
  pdf_bucket: str = "invoices"
  pdf_prefix: str = "pdf"
  signed_url_ttl: int = 7 * 24 * 3600
  require_area: bool = False
  line_item_limit: int = 100

  @classmethod
  def from_env(cls, config: EnvConfig = env) -> "InvoiceSettings":
    return cls(
      supplier=SupplierDetails.from_env(config),
      pricing=SponsorshipPricing.from_env(config),
      vat_rate=config.INVOICE_VAT_RATE,
      logo_url=config.INVOICE_LOGO_URL or None,
      logo_timeout=config.INVOICE_LOGO_TIMEOUT,
      store_pdf=config.INVOICE_STORE_PDF,
      pdf_bucket=config.INVOICE_PDF_BUCKET,
      pdf_prefix=config.INVOICE_PDF_PREFIX.strip("/"),
      signed_url_ttl=config.INVOICE_SIGNED_URL_TTL,
      require_area=config.INVOICE_REQUIRE_AREA,
      line_item_limit=config.STRIPE_LINE_ITEM_LIMIT,
    )
