import os

# Configure the environment before any sponsorbill module reads it
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("INVOICE_FROM_EMAIL", "Kleanly <kleanly@nibing.uy>")

from datetime import UTC, datetime
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import sponsorbill.models  # noqa: F401
from sponsorbill.config.invoicing import (
  InvoiceSettings,
  SponsorshipPricing,
  SponsorshipSlot,
  SupplierDetails,
)
from sponsorbill.database import Base
from sponsorbill.exceptions import DocumentRenderError
from sponsorbill.models.billing import (
  Business,
  Category,
  Cleaner,
  ServiceArea,
  ServiceCategory,
  SponsoredSubscription,
)
from sponsorbill.operations.aws.s3 import InvoiceArtifactStore, StoreResult
from sponsorbill.operations.aws.ses import SendResult
from sponsorbill.operations.billing.invoice_pipeline import InvoicePipeline
from sponsorbill.operations.billing.payment_provider import PaymentProvider
from sponsorbill.operations.documents import InvoiceDocumentRenderer

FIXED_NOW = datetime(2026, 3, 15, 9, 30, tzinfo=UTC)

# 2026-03-01 and 2026-04-01 as unix timestamps
PERIOD_START = 1772323200
PERIOD_END = 1775001600


@pytest.fixture
def test_engine():
  """In-memory SQLite database shared across connections."""
  engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
  )
  Base.metadata.create_all(bind=engine)
  yield engine
  Base.metadata.drop_all(bind=engine)
  engine.dispose()


@pytest.fixture
def db_session(test_engine):
  """Create a test database session."""
  TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
  session = TestingSessionLocal()
  yield session
  session.close()


# ============================================================================
# Fakes
# ============================================================================


class FakePaymentProvider(PaymentProvider):
  """In-memory processor keyed by invoice and subscription id."""

  def __init__(self):
    self.invoices: Dict[str, Dict[str, Any]] = {}
    self.lines: Dict[str, List[Dict[str, Any]]] = {}
    self.subscriptions: Dict[str, Dict[str, Any]] = {}
    self.calls: List[tuple] = []

  def add_invoice(self, invoice: Dict[str, Any], lines: List[Dict[str, Any]]):
    self.invoices[invoice["id"]] = invoice
    self.lines[invoice["id"]] = lines

  def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
    self.calls.append(("get_invoice", invoice_id))
    return self.invoices[invoice_id]

  def list_line_items(self, invoice_id: str, limit: int = 100) -> List[Dict[str, Any]]:
    self.calls.append(("list_line_items", invoice_id, limit))
    return list(self.lines.get(invoice_id, []))[:limit]

  def get_subscription(self, subscription_id: str) -> Optional[Dict[str, Any]]:
    self.calls.append(("get_subscription", subscription_id))
    return self.subscriptions.get(subscription_id)


class FakeArtifactStore(InvoiceArtifactStore):
  """Keeps stored documents in a dict; can be told to fail."""

  def __init__(self, fail: bool = False, signed_url: Optional[str] = None):
    super().__init__(s3_client=None, bucket="invoices", prefix="pdf")
    self.fail = fail
    self.signed_url = signed_url
    self.objects: Dict[str, bytes] = {}
    self.sign_calls: List[tuple] = []

  def store(self, data: bytes, path: str) -> StoreResult:
    if self.fail:
      return StoreResult(ok=False, error="bucket unavailable")
    self.objects[path] = data
    return StoreResult(ok=True, bucket=self.bucket, path=path)

  def sign(self, path: str, ttl: int) -> Optional[str]:
    self.sign_calls.append((path, ttl))
    return self.signed_url


class FakeNotifier:
  """Records invoice emails; accepts or rejects them on demand."""

  def __init__(self, accept: bool = True, reason: str = "Address blacklisted"):
    self.accept = accept
    self.reason = reason
    self.sent: List[Dict[str, Any]] = []

  def send_invoice_email(self, **kwargs) -> SendResult:
    self.sent.append(kwargs)
    if self.accept:
      return SendResult(accepted=True, message_id=f"msg-{len(self.sent)}")
    return SendResult(accepted=False, reason=self.reason)


class FailingRenderer:
  """Renderer that always fails, for no-partial-document checks."""

  def __init__(self):
    self.calls = 0

  def render(self, snapshot):
    self.calls += 1
    raise DocumentRenderError("font exploded", invoice_number=snapshot.invoice_number)


# ============================================================================
# Builders
# ============================================================================


def build_stripe_invoice(
  invoice_id: str = "in_test_001",
  subscription: Optional[str] = "sub_test_001",
  subtotal: Optional[int] = 2500,
  tax: Optional[int] = 0,
  total: Optional[int] = 2500,
  currency: str = "gbp",
  **extra,
) -> Dict[str, Any]:
  """A processor invoice payload as the provider returns it."""
  invoice = {
    "id": invoice_id,
    "object": "invoice",
    "subscription": subscription,
    "payment_intent": "pi_test_001",
    "currency": currency,
    "status": "paid",
    "subtotal": subtotal,
    "tax": tax,
    "total": total,
    "amount_due": total,
    "created": PERIOD_START,
    "period_start": PERIOD_START,
    "period_end": PERIOD_END,
    "metadata": {},
  }
  invoice.update(extra)
  return invoice


def build_stripe_line(
  amount: int = 2500,
  description: str = "1 x Sponsored listing (at £25.00 / month)",
  proration: bool = False,
  line_id: str = "il_test_001",
) -> Dict[str, Any]:
  return {
    "id": line_id,
    "object": "line_item",
    "amount": amount,
    "description": description,
    "quantity": 1,
    "proration": proration,
    "period": {"start": PERIOD_START, "end": PERIOD_END},
  }


@pytest.fixture
def invoice_settings():
  return InvoiceSettings(
    supplier=SupplierDetails(
      name="Kleanly",
      address="1 High Street, London, N1 1AA",
      email="kleanly@nibing.uy",
      vat_number="",
      sender="Kleanly <kleanly@nibing.uy>",
    ),
    pricing=SponsorshipPricing(
      default_rate_cents=100,
      slot_rates={SponsorshipSlot.GOLD: 250},
    ),
    logo_url=None,
    signed_url_ttl=3600,
  )


@pytest.fixture
def seed_sponsorship(db_session):
  """Create a cleaner sponsoring one category in one area."""

  def _seed(
    subscription_id: str = "sub_test_001",
    business_id: str = "cln_001",
    contact_email: Optional[str] = "owner@sparkle.example",
    email: Optional[str] = None,
    slot: Optional[int] = 3,
    area_km2: Optional[float] = 25.0,
  ):
    db_session.add(
      Cleaner(
        id=business_id,
        business_name="Sparkle Cleaning Ltd",
        contact_email=contact_email,
        email=email,
        address="12 Market Road, Leeds, LS1 4AB",
      )
    )
    db_session.add(
      ServiceArea(id="area_001", business_id=business_id, name="Leeds", area_km2=area_km2)
    )
    db_session.add(Category(id="cat_001", name="Domestic Cleaning", slug="domestic"))
    db_session.add(ServiceCategory(id="scat_001", name="Window Cleaning"))
    db_session.add(Business(id="biz_001", name="Shine Co", email="hello@shine.example"))
    db_session.add(
      SponsoredSubscription(
        stripe_subscription_id=subscription_id,
        business_id=business_id,
        area_id="area_001",
        category_id="cat_001",
        slot=slot,
      )
    )
    db_session.commit()

  return _seed


@pytest.fixture
def payment_provider():
  return FakePaymentProvider()


@pytest.fixture
def artifact_store():
  return FakeArtifactStore(signed_url="https://files.example.com/signed")


@pytest.fixture
def notifier():
  return FakeNotifier()


@pytest.fixture
def make_pipeline(db_session, payment_provider, artifact_store, notifier, invoice_settings):
  """Build a pipeline with fakes; any collaborator can be overridden."""

  def _make(**overrides) -> InvoicePipeline:
    options = {
      "session": db_session,
      "payment_provider": payment_provider,
      "artifact_store": artifact_store,
      "notifier": notifier,
      "renderer": InvoiceDocumentRenderer(),
      "settings": invoice_settings,
      "clock": lambda: FIXED_NOW,
      "logo_loader": lambda url, timeout: None,
    }
    options.update(overrides)
    return InvoicePipeline(**options)

  return _make


@pytest.fixture
def stripe_invoice():
  return build_stripe_invoice


@pytest.fixture
def stripe_line():
  return build_stripe_line


@pytest.fixture
def failing_renderer():
  return FailingRenderer()
