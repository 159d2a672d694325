"""
Invoice pipeline orchestrator.

Turns one processor billing event into at most one stored invoice and one
delivered email. A run moves through the states below in order and never
revisits one; a retry starts again from ``start`` and re-derives everything
except the invoice number and the line-item rows, which are fixed at insert.

  start -> gate-checked -> resolved -> reconciled -> rendered -> persisted
        -> stored -> notified -> complete

Incomplete upstream data ends the run with a named outcome. Infrastructure
failures are logged and re-raised to the trigger.
"""

import time
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config.invoicing import InvoiceSettings, SupplierDetails
from ...config import env
from ...exceptions import (
  ConfigurationError,
  DocumentRenderError,
  InvoiceNumberConflictError,
  MalformedProcessorResponseError,
)
from ...logger import log_error, log_pipeline_outcome, pipeline_logger as logger
from ...models.billing import BillingInvoice, InvoiceStatus
from ...utils.formatting import area_headline
from ..documents import InvoiceDocumentRenderer, fetch_logo
from .entity_resolver import EntityResolver
from .idempotency import GateDecision, GateStatus, IdempotencyGate
from .invoice_repository import InvoiceRepository
from .payment_provider import PaymentProvider
from .reconciler import MonetaryReconciler
from .types import (
  BillingEvent,
  DocumentLine,
  InvoiceSnapshot,
  MonetaryBreakdown,
  Rejection,
  RenderedDocument,
  ResolvedContext,
)

OUTCOME_OK = "OK"
OUTCOME_ALREADY_EMAILED = "already-emailed"
EMAIL_ERROR_PREFIX = "email-error:"

# Attempts at allocating a free invoice number before giving up
MAX_NUMBER_ATTEMPTS = 5


class PipelineState(str, Enum):
  START = "start"
  GATE_CHECKED = "gate-checked"
  RESOLVED = "resolved"
  RECONCILED = "reconciled"
  RENDERED = "rendered"
  PERSISTED = "persisted"
  STORED = "stored"
  NOTIFIED = "notified"
  COMPLETE = "complete"


@dataclass
class PipelineResult:
  """What one run did, for logs and operator tooling."""

  billing_event_id: str
  outcome: str
  state: PipelineState
  invoice_id: Optional[str] = None
  invoice_number: Optional[str] = None
  created: bool = False
  artifact_stored: bool = False

  @property
  def ok(self) -> bool:
    return self.outcome == OUTCOME_OK


class InvoicePipeline:
  """Process billing events into invoices.

  Collaborators are injected so tests can substitute fakes for the processor,
  the artifact store and the notifier. ``artifact_store`` may be None when
  document storage is disabled.
  """

  def __init__(
    self,
    session: Session,
    payment_provider: PaymentProvider,
    artifact_store,
    notifier,
    renderer: InvoiceDocumentRenderer,
    settings: InvoiceSettings,
    clock: Optional[Callable[[], datetime]] = None,
    logo_loader: Optional[Callable[[Optional[str], float], Optional[bytes]]] = None,
  ):
    self.session = session
    self.payment_provider = payment_provider
    self.artifact_store = artifact_store
    self.notifier = notifier
    self.renderer = renderer
    self.settings = settings
    self.clock = clock or (lambda: datetime.now(UTC))
    self.logo_loader = logo_loader or fetch_logo

    self.gate = IdempotencyGate(session)
    self.resolver = EntityResolver(
      session, payment_provider=payment_provider, require_area=settings.require_area
    )
    self.reconciler = MonetaryReconciler(settings.pricing)
    self.repository = InvoiceRepository(session)

    self._logo: Optional[bytes] = None
    self._logo_loaded = False

  def process(self, billing_event_id: str) -> str:
    """Run the pipeline and return only the outcome code."""
    return self.run(billing_event_id).outcome

  def run(self, billing_event_id: str, force: bool = False) -> PipelineResult:
    """Run the pipeline for one billing event.

    Args:
        billing_event_id: Processor invoice id
        force: Re-send an invoice that was already emailed

    Returns:
        PipelineResult with the outcome code

    Raises:
        SponsorBillError, SQLAlchemyError or processor errors on infrastructure
        failure; the invoice is left in a state a retry can finish.
    """
    start_time = time.time()
    result = PipelineResult(billing_event_id, OUTCOME_OK, PipelineState.START)
    try:
      self._run(result, force)
    except Exception as e:
      log_error(
        logger,
        e,
        component="pipeline",
        action="run",
        error_category=_error_category(e),
        billing_event_id=billing_event_id,
        metadata={"force": force, "state": result.state.value},
      )
      raise

    log_pipeline_outcome(
      logger,
      billing_event_id,
      result.outcome,
      (time.time() - start_time) * 1000,
      invoice_number=result.invoice_number,
      metadata={
        "state": result.state.value,
        "created": result.created,
        "artifact_stored": result.artifact_stored,
      },
    )
    return result

  # ==========================================================================
  # Stages
  # ==========================================================================

  def _run(self, result: PipelineResult, force: bool) -> None:
    """Advance ``result`` through the states; it keeps the last one reached."""
    billing_event_id = result.billing_event_id
    decision = self.gate.resolve(billing_event_id)
    result.state = PipelineState.GATE_CHECKED

    if decision.status is GateStatus.EXISTING_SENT:
      result.invoice_id = decision.invoice.id
      result.invoice_number = decision.invoice.invoice_number
      if not force:
        result.outcome = OUTCOME_ALREADY_EMAILED
        return
      logger.info(
        f"Re-sending invoice {decision.invoice.invoice_number} on request",
        extra={"billing_event_id": billing_event_id, "action": "forced_resend"},
      )

    event = self._fetch_event(billing_event_id)

    context = self.resolver.resolve(event)
    result.state = PipelineState.RESOLVED
    if isinstance(context, Rejection):
      logger.warning(
        f"Billing event {billing_event_id} rejected: {context.detail}",
        extra={"billing_event_id": billing_event_id, "outcome": context.code.value},
      )
      result.outcome = context.code.value
      return

    breakdown = self.reconciler.reconcile(
      event,
      slot=context.subscription.slot,
      stored_area_km2=context.area_km2,
    )
    result.state = PipelineState.RECONCILED

    if decision.is_new:
      invoice, document = self._create_invoice(decision, context, breakdown, result)
    else:
      invoice, document = self._refresh_invoice(decision, context, breakdown, result)
    result.state = PipelineState.PERSISTED
    result.invoice_id = invoice.id
    result.invoice_number = invoice.invoice_number
    result.created = decision.is_new

    download_url = self._store_document(invoice, document, result)
    if result.artifact_stored:
      result.state = PipelineState.STORED

    sent = self.notifier.send_invoice_email(
      recipient=invoice.customer_email,
      customer_name=invoice.customer_name,
      invoice_number=invoice.invoice_number,
      industry_name=invoice.industry_name,
      area_name=invoice.area_name,
      total_cents=invoice.total_cents,
      currency=invoice.currency,
      supplier_name=invoice.supplier_name,
      pdf=document.content,
      download_url=download_url,
    )
    result.state = PipelineState.NOTIFIED

    if not sent.accepted:
      result.outcome = f"{EMAIL_ERROR_PREFIX}{sent.reason or 'unknown'}"
      return

    self.repository.mark_emailed(invoice, sent.message_id)
    result.state = PipelineState.COMPLETE

  def _fetch_event(self, billing_event_id: str) -> BillingEvent:
    limit = self.settings.line_item_limit
    data = self.payment_provider.get_invoice(billing_event_id)
    # One line past the limit tells a full listing apart from a cut one
    lines = self.payment_provider.list_line_items(billing_event_id, limit=limit + 1)
    event = BillingEvent.from_processor(data, lines[:limit])
    if event.id != billing_event_id:
      raise MalformedProcessorResponseError(
        f"processor returned invoice {event.id}", billing_event_id=billing_event_id
      )

    if len(lines) > limit:
      omitted = _omitted_line_count(data, limit)
      logger.warning(
        f"Invoice {billing_event_id} has more than {limit} line items; "
        f"the rest are summarised in one row",
        extra={
          "billing_event_id": billing_event_id,
          "action": "line_items_truncated",
          "omitted_line_count": omitted,
        },
      )
      event = replace(event, lines_truncated=True, omitted_line_count=omitted)
    return event

  def _create_invoice(
    self,
    decision: GateDecision,
    context: ResolvedContext,
    breakdown: MonetaryBreakdown,
    result: PipelineResult,
  ) -> Tuple[BillingInvoice, RenderedDocument]:
    """Allocate a number, render, then insert; a lost number is re-allocated."""
    fields = self._invoice_fields(context, breakdown)
    document_lines = self._document_lines(context, breakdown)
    line_items = self._line_item_rows(context, document_lines)
    now = self.clock()

    for attempt in range(MAX_NUMBER_ATTEMPTS):
      invoice_number = self.repository.next_invoice_number(now=now, attempt=attempt)
      snapshot = self._snapshot(
        invoice_number=invoice_number,
        issued_on=now,
        currency=breakdown.currency,
        supplier=self.settings.supplier,
        customer_name=context.customer.name,
        customer_email=context.customer.email,
        customer_address=context.customer.address,
        industry_name=context.industry_name,
        area_name=context.area_name,
        lines=document_lines,
        breakdown=breakdown,
        context=context,
      )
      document = self.renderer.render(snapshot)
      result.state = PipelineState.RENDERED

      try:
        invoice = self.repository.upsert(
          decision, {**fields, "invoice_number": invoice_number}, line_items
        )
      except InvoiceNumberConflictError:
        logger.warning(
          f"Invoice number {invoice_number} taken, allocating another",
          extra={"billing_event_id": context.event.id, "action": "number_conflict"},
        )
        continue

      return invoice, document

    raise InvoiceNumberConflictError(invoice_number)

  def _refresh_invoice(
    self,
    decision: GateDecision,
    context: ResolvedContext,
    breakdown: MonetaryBreakdown,
    result: PipelineResult,
  ) -> Tuple[BillingInvoice, RenderedDocument]:
    """Re-render an existing invoice from its stored snapshot.

    The table shows the line items just fetched from the processor; the
    stored line-item rows are left as inserted.
    """
    invoice = decision.invoice
    fields = self._invoice_fields(context, breakdown)

    snapshot = self._snapshot(
      invoice_number=invoice.invoice_number,
      issued_on=invoice.created_at,
      currency=invoice.currency,
      supplier=SupplierDetails(
        name=invoice.supplier_name,
        address=invoice.supplier_address or "",
        email=invoice.supplier_email or "",
        vat_number=invoice.supplier_vat_number or "",
        sender=self.settings.supplier.sender,
      ),
      customer_name=invoice.customer_name or "",
      customer_email=invoice.customer_email,
      customer_address=invoice.customer_address or "",
      industry_name=context.industry_name,
      area_name=context.area_name,
      lines=self._document_lines(context, breakdown),
      breakdown=breakdown,
      context=context,
    )
    document = self.renderer.render(snapshot)
    result.state = PipelineState.RENDERED

    return self.repository.upsert(decision, fields, []), document

  def _store_document(
    self, invoice: BillingInvoice, document: RenderedDocument, result: PipelineResult
  ) -> Optional[str]:
    """Upload and sign the document; failures degrade to no stored copy."""
    if not self.settings.store_pdf or self.artifact_store is None:
      return None

    path = self.artifact_store.path_for(invoice.business_id, invoice.invoice_number)
    stored = self.artifact_store.store(document.content, path)
    if not stored.ok:
      logger.warning(
        f"Invoice {invoice.invoice_number} not stored: {stored.error}",
        extra={
          "billing_event_id": invoice.stripe_invoice_id,
          "invoice_number": invoice.invoice_number,
          "action": "store_degraded",
        },
      )
      return None

    signed_url = self.artifact_store.sign(stored.path, self.settings.signed_url_ttl)
    if signed_url is None:
      logger.warning(
        f"Invoice {invoice.invoice_number} stored without a download link",
        extra={"invoice_number": invoice.invoice_number, "action": "sign_degraded"},
      )

    self.repository.attach_artifact(invoice, stored.bucket, stored.path, signed_url)
    result.artifact_stored = True
    return signed_url

  # ==========================================================================
  # Builders
  # ==========================================================================

  def _invoice_fields(
    self, context: ResolvedContext, breakdown: MonetaryBreakdown
  ) -> Dict[str, Any]:
    event = context.event
    supplier = self.settings.supplier
    period_start, period_end = event.billing_period

    return {
      "stripe_invoice_id": event.id,
      "stripe_payment_intent_id": event.payment_intent_id,
      "stripe_subscription_id": event.subscription_id,
      "business_id": context.customer.business_id,
      "area_id": context.subscription.area_id,
      "category_id": context.category_id,
      "status": event.status or InvoiceStatus.OPEN.value,
      "currency": breakdown.currency,
      "subtotal_cents": breakdown.subtotal_cents,
      "tax_cents": breakdown.tax_cents,
      "total_cents": breakdown.total_cents,
      "billing_period_start": period_start,
      "billing_period_end": period_end,
      "supplier_name": supplier.name,
      "supplier_address": supplier.address or None,
      "supplier_email": supplier.email or None,
      "supplier_vat_number": supplier.vat_number or None,
      "customer_name": context.customer.name or None,
      "customer_email": context.customer.email,
      "customer_address": context.customer.address or None,
      "area_name": context.area_name,
      "industry_name": context.industry_name,
      "area_km2": breakdown.area_km2,
      "rate_per_km2_cents": breakdown.rate_per_km2_cents,
    }

  def _document_lines(
    self, context: ResolvedContext, breakdown: MonetaryBreakdown
  ) -> List[DocumentLine]:
    """Priced lines carry the area headline; the first one shows area and rate."""
    headline = area_headline(context.industry_name, context.area_name)
    event = context.event

    if not event.lines:
      return [
        DocumentLine(
          description=headline,
          amount_cents=breakdown.subtotal_cents,
          area_km2=breakdown.area_km2,
          rate_per_km2_cents=breakdown.rate_per_km2_cents,
        )
      ]

    lines = []
    priced_seen = False
    for item in event.lines:
      if item.proration:
        lines.append(
          DocumentLine(
            description=item.description or headline,
            amount_cents=item.amount,
            proration=True,
          )
        )
      elif not priced_seen:
        priced_seen = True
        lines.append(
          DocumentLine(
            description=headline,
            amount_cents=item.amount,
            area_km2=breakdown.area_km2,
            rate_per_km2_cents=breakdown.rate_per_km2_cents,
          )
        )
      else:
        lines.append(DocumentLine(description=headline, amount_cents=item.amount))

    if event.lines_truncated:
      listed = sum(item.amount for item in event.lines)
      count = event.omitted_line_count
      description = "Further line items"
      if count:
        description = f"{count} further line item{'s' if count > 1 else ''}"
      lines.append(
        DocumentLine(
          description=description,
          amount_cents=breakdown.subtotal_cents - listed,
          summary=True,
        )
      )
    return lines

  def _line_item_rows(
    self, context: ResolvedContext, document_lines: List[DocumentLine]
  ) -> List[Dict[str, Any]]:
    event = context.event
    rows = []
    for index, line in enumerate(document_lines):
      item = event.lines[index] if index < len(event.lines) else None
      rows.append(
        {
          "description": line.description,
          "quantity": item.quantity if item else 1,
          "unit_price_cents": item.unit_amount if item else line.amount_cents,
          "amount_cents": line.amount_cents,
          "period_start": item.period_start if item else event.period_start,
          "period_end": item.period_end if item else event.period_end,
          "line_metadata": {
            "processor_line_id": item.id if item else None,
            "proration": line.proration,
            "summary": line.summary,
            "area_km2": line.area_km2,
            "rate_per_km2_cents": line.rate_per_km2_cents,
            "source": context.subscription.source,
          },
        }
      )
    return rows

  def _snapshot(
    self,
    invoice_number: str,
    issued_on: datetime,
    currency: str,
    supplier,
    customer_name: str,
    customer_email: str,
    customer_address: str,
    industry_name: str,
    area_name: str,
    lines: List[DocumentLine],
    breakdown: MonetaryBreakdown,
    context: ResolvedContext,
  ) -> InvoiceSnapshot:
    period_start, period_end = context.event.billing_period
    return InvoiceSnapshot(
      invoice_number=invoice_number,
      issued_on=issued_on.date() if isinstance(issued_on, datetime) else issued_on,
      currency=currency,
      supplier=supplier,
      customer_name=customer_name,
      customer_email=customer_email,
      customer_address=customer_address,
      industry_name=industry_name,
      area_name=area_name,
      lines=lines,
      subtotal_cents=breakdown.subtotal_cents,
      tax_cents=breakdown.tax_cents,
      total_cents=breakdown.total_cents,
      period_start=period_start,
      period_end=period_end,
      vat_rate=self.settings.vat_rate,
      processor_reference=context.event.id,
      logo=self._load_logo(),
    )

  def _load_logo(self) -> Optional[bytes]:
    if not self._logo_loaded:
      self._logo = self.logo_loader(self.settings.logo_url, self.settings.logo_timeout)
      self._logo_loaded = True
    return self._logo


def _omitted_line_count(data: Dict[str, Any], limit: int) -> Optional[int]:
  """Lines past ``limit`` per the invoice's embedded line list, if it says."""
  embedded = data.get("lines") if isinstance(data, dict) else None
  total_count = embedded.get("total_count") if isinstance(embedded, dict) else None
  if isinstance(total_count, int) and total_count > limit:
    return total_count - limit
  return None


def _error_category(error: Exception) -> str:
  if isinstance(error, DocumentRenderError):
    return "render"
  if isinstance(error, SQLAlchemyError):
    return "database"
  if isinstance(error, MalformedProcessorResponseError):
    return "processor"
  return "infrastructure"


def create_invoice_pipeline(
  session: Optional[Session] = None,
  settings: Optional[InvoiceSettings] = None,
) -> InvoicePipeline:
  """Wire the production collaborators from the environment."""
  from ...database import session as scoped
  from ..aws.s3 import InvoiceArtifactStore, S3Client
  from ..aws.ses import SESEmailService
  from .payment_provider import get_payment_provider

  problems = env.validate()
  if problems:
    if env.is_production():
      raise ConfigurationError(problems)
    logger.warning(f"Configuration problems: {'; '.join(problems)}")

  settings = settings or InvoiceSettings.from_env()

  artifact_store = None
  if settings.store_pdf:
    artifact_store = InvoiceArtifactStore(
      S3Client(), settings.pdf_bucket, settings.pdf_prefix
    )

  return InvoicePipeline(
    session=session or scoped(),
    payment_provider=get_payment_provider("stripe"),
    artifact_store=artifact_store,
    notifier=SESEmailService(from_address=settings.supplier.sender),
    renderer=InvoiceDocumentRenderer(),
    settings=settings,
  )
