"""Tests for the invoice pipeline orchestrator."""

from dataclasses import replace
from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from sponsorbill.exceptions import DocumentRenderError, MalformedProcessorResponseError
from sponsorbill.models.billing import BillingInvoice, BillingInvoiceLineItem
from sponsorbill.operations.billing.invoice_pipeline import (
  OUTCOME_ALREADY_EMAILED,
  OUTCOME_OK,
  PipelineState,
)
from sponsorbill.operations.documents import InvoiceDocumentRenderer

PIPELINE_MODULE = "sponsorbill.operations.billing.invoice_pipeline"


@pytest.fixture
def standard_event(payment_provider, stripe_invoice, stripe_line):
  """A paid monthly sponsorship invoice for the seeded subscription."""
  payment_provider.add_invoice(stripe_invoice(), [stripe_line()])
  return "in_test_001"


def _invoices(db_session):
  return db_session.query(BillingInvoice).all()


class RecordingRenderer(InvoiceDocumentRenderer):
  """Real renderer that keeps every snapshot it was given."""

  def __init__(self):
    super().__init__()
    self.snapshots = []

  def render(self, snapshot):
    self.snapshots.append(snapshot)
    return super().render(snapshot)


class TestSuccessfulRun:
  """First delivery of a billing event."""

  def test_creates_invoice_and_emails_it(
    self, db_session, seed_sponsorship, standard_event, make_pipeline, notifier
  ):
    seed_sponsorship()

    result = make_pipeline().run(standard_event)

    assert result.outcome == OUTCOME_OK
    assert result.state == PipelineState.COMPLETE
    assert result.created is True

    invoices = _invoices(db_session)
    assert len(invoices) == 1
    invoice = invoices[0]
    assert invoice.invoice_number == "INV-2026-03-0001"
    assert invoice.stripe_invoice_id == "in_test_001"
    assert invoice.business_id == "cln_001"
    assert invoice.total_cents == 2500
    assert invoice.subtotal_cents == 2500
    assert invoice.tax_cents == 0
    assert invoice.currency == "gbp"
    assert invoice.customer_email == "owner@sparkle.example"
    assert invoice.customer_name == "Sparkle Cleaning Ltd"
    assert invoice.supplier_name == "Kleanly"
    assert invoice.industry_name == "Domestic Cleaning"
    assert invoice.area_name == "Leeds"
    assert invoice.emailed_at is not None
    assert invoice.email_message_id == "msg-1"

    assert len(notifier.sent) == 1
    email = notifier.sent[0]
    assert email["recipient"] == "owner@sparkle.example"
    assert email["invoice_number"] == "INV-2026-03-0001"
    assert email["total_cents"] == 2500
    assert email["pdf"].startswith(b"%PDF")

  def test_process_returns_outcome_code(
    self, seed_sponsorship, standard_event, make_pipeline
  ):
    seed_sponsorship()

    assert make_pipeline().process(standard_event) == "OK"

  def test_line_items_carry_area_presentation(
    self, db_session, seed_sponsorship, standard_event, make_pipeline
  ):
    seed_sponsorship()

    make_pipeline().run(standard_event)

    invoice = _invoices(db_session)[0]
    assert invoice.area_km2 == 25.0
    assert invoice.rate_per_km2_cents == 100
    assert len(invoice.line_items) == 1
    item = invoice.line_items[0]
    assert item.description == "Domestic Cleaning - Leeds"
    assert item.amount_cents == 2500
    assert item.line_metadata["processor_line_id"] == "il_test_001"
    assert item.line_metadata["area_km2"] == 25.0

  def test_stores_document_and_signed_link(
    self, db_session, seed_sponsorship, standard_event, make_pipeline, artifact_store,
    notifier,
  ):
    seed_sponsorship()

    result = make_pipeline().run(standard_event)

    assert result.artifact_stored is True
    assert "pdf/cln_001/INV-2026-03-0001.pdf" in artifact_store.objects
    assert artifact_store.sign_calls == [("pdf/cln_001/INV-2026-03-0001.pdf", 3600)]

    invoice = _invoices(db_session)[0]
    assert invoice.pdf_storage_bucket == "invoices"
    assert invoice.pdf_storage_path == "pdf/cln_001/INV-2026-03-0001.pdf"
    assert invoice.pdf_signed_url == "https://files.example.com/signed"
    assert notifier.sent[0]["download_url"] == "https://files.example.com/signed"

  def test_tax_is_kept_from_processor(
    self, db_session, seed_sponsorship, payment_provider, stripe_invoice, stripe_line,
    make_pipeline,
  ):
    seed_sponsorship()
    payment_provider.add_invoice(
      stripe_invoice(subtotal=2500, tax=500, total=3000), [stripe_line()]
    )

    make_pipeline().run("in_test_001")

    invoice = _invoices(db_session)[0]
    assert invoice.subtotal_cents == 2500
    assert invoice.tax_cents == 500
    assert invoice.total_cents == 3000

  def test_invoice_numbers_follow_monthly_sequence(
    self, db_session, seed_sponsorship, payment_provider, stripe_invoice, stripe_line,
    make_pipeline,
  ):
    seed_sponsorship()
    payment_provider.add_invoice(stripe_invoice("in_a"), [stripe_line()])
    payment_provider.add_invoice(stripe_invoice("in_b"), [stripe_line()])

    pipeline = make_pipeline()
    first = pipeline.run("in_a")
    second = pipeline.run("in_b")

    assert first.invoice_number == "INV-2026-03-0001"
    assert second.invoice_number == "INV-2026-03-0002"

  def test_number_taken_concurrently_is_reallocated(
    self, db_session, seed_sponsorship, standard_event, make_pipeline
  ):
    seed_sponsorship()
    db_session.add(
      BillingInvoice(
        stripe_invoice_id="in_elsewhere",
        invoice_number="INV-2026-03-0002",
        business_id="cln_001",
        currency="gbp",
        subtotal_cents=100,
        total_cents=100,
        supplier_name="Kleanly",
        customer_email="someone@example.com",
      )
    )
    db_session.commit()

    result = make_pipeline().run(standard_event)

    assert result.outcome == OUTCOME_OK
    assert result.invoice_number == "INV-2026-03-0003"
    assert len(_invoices(db_session)) == 2


class TestIdempotency:
  """Redelivery of the same billing event."""

  def test_second_run_reports_already_emailed(
    self, db_session, seed_sponsorship, standard_event, make_pipeline, notifier,
    payment_provider,
  ):
    seed_sponsorship()
    pipeline = make_pipeline()

    assert pipeline.process(standard_event) == OUTCOME_OK
    fetches = len([c for c in payment_provider.calls if c[0] == "get_invoice"])

    result = pipeline.run(standard_event)

    assert result.outcome == OUTCOME_ALREADY_EMAILED
    assert result.state == PipelineState.GATE_CHECKED
    assert result.invoice_number == "INV-2026-03-0001"
    assert len(_invoices(db_session)) == 1
    assert len(notifier.sent) == 1
    # The gate answers before the processor is asked again
    assert len([c for c in payment_provider.calls if c[0] == "get_invoice"]) == fetches

  def test_rejected_email_then_retry_keeps_number(
    self, db_session, seed_sponsorship, standard_event, make_pipeline, notifier
  ):
    seed_sponsorship()
    notifier.accept = False
    pipeline = make_pipeline()

    first = pipeline.run(standard_event)

    assert first.outcome == "email-error:Address blacklisted"
    assert first.state == PipelineState.NOTIFIED
    invoice = _invoices(db_session)[0]
    assert invoice.emailed_at is None
    number = invoice.invoice_number

    notifier.accept = True
    second = pipeline.run(standard_event)

    assert second.outcome == OUTCOME_OK
    assert second.created is False
    assert second.invoice_number == number
    invoices = _invoices(db_session)
    assert len(invoices) == 1
    assert invoices[0].emailed_at is not None
    assert db_session.query(BillingInvoiceLineItem).count() == 1
    assert len(notifier.sent) == 2

  def test_retry_refreshes_amounts_but_not_snapshots(
    self, db_session, seed_sponsorship, payment_provider, stripe_invoice, stripe_line,
    make_pipeline, notifier,
  ):
    seed_sponsorship()
    notifier.accept = False
    payment_provider.add_invoice(stripe_invoice(status="open"), [stripe_line()])
    pipeline = make_pipeline()
    pipeline.run("in_test_001")

    # The customer changes their contact address before the retry
    from sponsorbill.models.billing import Cleaner

    cleaner = db_session.query(Cleaner).filter(Cleaner.id == "cln_001").one()
    cleaner.contact_email = "new@sparkle.example"
    db_session.commit()
    payment_provider.add_invoice(stripe_invoice(status="paid"), [stripe_line()])

    notifier.accept = True
    pipeline.run("in_test_001")

    invoice = _invoices(db_session)[0]
    assert invoice.status == "paid"
    assert invoice.customer_email == "owner@sparkle.example"
    assert notifier.sent[-1]["recipient"] == "owner@sparkle.example"

  def test_force_resends_without_new_row(
    self, db_session, seed_sponsorship, standard_event, make_pipeline, notifier
  ):
    seed_sponsorship()
    pipeline = make_pipeline()
    pipeline.run(standard_event)

    result = pipeline.run(standard_event, force=True)

    assert result.outcome == OUTCOME_OK
    assert result.created is False
    assert result.invoice_number == "INV-2026-03-0001"
    assert len(_invoices(db_session)) == 1
    assert len(notifier.sent) == 2


class TestRejections:
  """Incomplete upstream data ends the run with a named outcome."""

  def test_missing_subscription(
    self, db_session, seed_sponsorship, payment_provider, stripe_invoice, stripe_line,
    make_pipeline, notifier,
  ):
    seed_sponsorship()
    payment_provider.add_invoice(stripe_invoice(subscription=None), [stripe_line()])

    result = make_pipeline().run("in_test_001")

    assert result.outcome == "no-subscription"
    assert result.state == PipelineState.RESOLVED
    assert _invoices(db_session) == []
    assert notifier.sent == []
    assert not [c for c in payment_provider.calls if c[0] == "get_subscription"]

  def test_unknown_subscription(
    self, db_session, seed_sponsorship, payment_provider, stripe_invoice, stripe_line,
    make_pipeline,
  ):
    seed_sponsorship()
    payment_provider.add_invoice(
      stripe_invoice(subscription="sub_unknown"), [stripe_line()]
    )

    assert make_pipeline().process("in_test_001") == "no-business-id"
    assert _invoices(db_session) == []

  def test_missing_email(
    self, db_session, seed_sponsorship, standard_event, make_pipeline, notifier
  ):
    seed_sponsorship(contact_email="", email=None)

    result = make_pipeline().run(standard_event)

    assert result.outcome == "no-email"
    assert _invoices(db_session) == []
    assert notifier.sent == []

  def test_processor_metadata_links_subscription(
    self, db_session, seed_sponsorship, payment_provider, stripe_invoice, stripe_line,
    make_pipeline,
  ):
    seed_sponsorship()
    payment_provider.subscriptions["sub_checkout"] = {
      "id": "sub_checkout",
      "metadata": {
        "cleaner_id": "cln_001",
        "area_id": "area_001",
        "category_id": "cat_001",
        "slot": "1",
      },
    }
    payment_provider.add_invoice(
      stripe_invoice(subscription="sub_checkout"), [stripe_line()]
    )

    result = make_pipeline().run("in_test_001")

    assert result.outcome == OUTCOME_OK
    invoice = _invoices(db_session)[0]
    assert invoice.business_id == "cln_001"
    assert invoice.rate_per_km2_cents == 250


class TestFailures:
  """Infrastructure failures propagate and leave nothing half-done."""

  def test_render_failure_writes_nothing(
    self, db_session, seed_sponsorship, standard_event, make_pipeline, failing_renderer,
    artifact_store, notifier,
  ):
    seed_sponsorship()

    with pytest.raises(DocumentRenderError):
      make_pipeline(renderer=failing_renderer).run(standard_event)

    assert failing_renderer.calls == 1
    assert _invoices(db_session) == []
    assert artifact_store.objects == {}
    assert notifier.sent == []

  def test_missing_amounts_raise(
    self, db_session, seed_sponsorship, payment_provider, stripe_invoice, make_pipeline
  ):
    seed_sponsorship()
    payment_provider.add_invoice(
      stripe_invoice(subtotal=None, tax=None, total=None), []
    )

    with pytest.raises(MalformedProcessorResponseError):
      make_pipeline().run("in_test_001")

    assert _invoices(db_session) == []

  def test_storage_failure_is_not_fatal(
    self, db_session, seed_sponsorship, standard_event, make_pipeline, artifact_store,
    notifier,
  ):
    seed_sponsorship()
    artifact_store.fail = True

    result = make_pipeline().run(standard_event)

    assert result.outcome == OUTCOME_OK
    assert result.artifact_stored is False
    invoice = _invoices(db_session)[0]
    assert invoice.pdf_storage_path is None
    assert invoice.emailed_at is not None
    assert notifier.sent[0]["download_url"] is None

  def test_signing_failure_keeps_stored_path(
    self, db_session, seed_sponsorship, standard_event, make_pipeline, artifact_store
  ):
    seed_sponsorship()
    artifact_store.signed_url = None

    make_pipeline().run(standard_event)

    invoice = _invoices(db_session)[0]
    assert invoice.pdf_storage_path == "pdf/cln_001/INV-2026-03-0001.pdf"
    assert invoice.pdf_signed_url is None

  def test_storage_disabled_skips_upload(
    self, db_session, seed_sponsorship, standard_event, make_pipeline, invoice_settings
  ):
    seed_sponsorship()

    result = make_pipeline(
      settings=replace(invoice_settings, store_pdf=False), artifact_store=None
    ).run(standard_event)

    assert result.outcome == OUTCOME_OK
    assert result.artifact_stored is False
    assert result.state == PipelineState.COMPLETE


class TestRetryRendering:
  """A retried event is rendered again from current processor data."""

  def test_retry_table_uses_freshly_fetched_lines(
    self, db_session, seed_sponsorship, payment_provider, stripe_invoice, stripe_line,
    make_pipeline, notifier,
  ):
    seed_sponsorship()
    notifier.accept = False
    payment_provider.add_invoice(stripe_invoice(), [stripe_line()])
    renderer = RecordingRenderer()
    pipeline = make_pipeline(renderer=renderer)
    pipeline.run("in_test_001")

    credit = stripe_line(
      amount=-500, description="Unused time on Bronze", proration=True, line_id="il_2"
    )
    payment_provider.add_invoice(
      stripe_invoice(subtotal=2000, total=2000), [stripe_line(), credit]
    )
    notifier.accept = True
    result = pipeline.run("in_test_001")

    assert result.outcome == OUTCOME_OK
    descriptions = [line.description for line in renderer.snapshots[-1].lines]
    assert descriptions == ["Domestic Cleaning - Leeds", "Unused time on Bronze"]
    # Stored rows stay as first inserted
    items = db_session.query(BillingInvoiceLineItem).all()
    assert [item.amount_cents for item in items] == [2500]

  def test_both_runs_go_through_upsert(
    self, seed_sponsorship, standard_event, make_pipeline, notifier
  ):
    seed_sponsorship()
    notifier.accept = False
    pipeline = make_pipeline()

    with patch.object(
      pipeline.repository, "upsert", wraps=pipeline.repository.upsert
    ) as upsert:
      pipeline.run(standard_event)
      notifier.accept = True
      pipeline.run(standard_event)

    first, second = upsert.call_args_list
    assert first.args[0].is_new is True
    assert first.args[1]["invoice_number"] == "INV-2026-03-0001"
    assert len(first.args[2]) == 1
    assert second.args[0].is_new is False
    assert second.args[2] == []


class TestStateTracking:
  """Failures are logged with the last state the run reached."""

  def test_persistence_failure_after_render(
    self, db_session, seed_sponsorship, standard_event, make_pipeline, notifier
  ):
    seed_sponsorship()
    pipeline = make_pipeline()

    with patch.object(
      pipeline.repository, "create", side_effect=SQLAlchemyError("database gone")
    ):
      with patch(f"{PIPELINE_MODULE}.log_error") as mock_log_error:
        with pytest.raises(SQLAlchemyError):
          pipeline.run(standard_event)

    kwargs = mock_log_error.call_args.kwargs
    assert kwargs["metadata"]["state"] == PipelineState.RENDERED.value
    assert kwargs["error_category"] == "database"
    assert notifier.sent == []

  def test_render_failure_stops_after_reconciling(
    self, seed_sponsorship, standard_event, make_pipeline, failing_renderer
  ):
    seed_sponsorship()

    with patch(f"{PIPELINE_MODULE}.log_error") as mock_log_error:
      with pytest.raises(DocumentRenderError):
        make_pipeline(renderer=failing_renderer).run(standard_event)

    kwargs = mock_log_error.call_args.kwargs
    assert kwargs["metadata"]["state"] == PipelineState.RECONCILED.value
    assert kwargs["error_category"] == "render"


class TestLineItemLimit:
  """Invoices holding more line items than are listed."""

  def _lines(self, stripe_line, count):
    return [
      stripe_line(amount=1000, description=f"Seat {i}", line_id=f"il_{i}")
      for i in range(count)
    ]

  def test_lines_past_limit_are_summarised(
    self, db_session, seed_sponsorship, payment_provider, stripe_invoice, stripe_line,
    make_pipeline, invoice_settings,
  ):
    seed_sponsorship()
    payment_provider.add_invoice(
      stripe_invoice(
        subtotal=4000, total=4000, lines={"object": "list", "total_count": 4}
      ),
      self._lines(stripe_line, 4),
    )
    renderer = RecordingRenderer()
    pipeline = make_pipeline(
      settings=replace(invoice_settings, line_item_limit=2), renderer=renderer
    )

    provider = pipeline.payment_provider
    with patch.object(
      provider, "list_line_items", wraps=provider.list_line_items
    ) as listing:
      with patch(f"{PIPELINE_MODULE}.logger.warning") as mock_warning:
        result = pipeline.run("in_test_001")

    assert result.outcome == OUTCOME_OK
    assert listing.call_args.kwargs["limit"] == 3
    actions = [
      call.kwargs.get("extra", {}).get("action") for call in mock_warning.call_args_list
    ]
    assert "line_items_truncated" in actions

    invoice = _invoices(db_session)[0]
    assert [item.amount_cents for item in invoice.line_items] == [1000, 1000, 2000]
    summary = invoice.line_items[-1]
    assert summary.description == "2 further line items"
    assert summary.line_metadata["summary"] is True
    assert sum(item.amount_cents for item in invoice.line_items) == invoice.subtotal_cents

    rendered = renderer.snapshots[-1].lines
    assert rendered[-1].description == "2 further line items"
    assert rendered[-1].summary is True

  def test_unknown_remainder_count(
    self, db_session, seed_sponsorship, payment_provider, stripe_invoice, stripe_line,
    make_pipeline, invoice_settings,
  ):
    seed_sponsorship()
    payment_provider.add_invoice(
      stripe_invoice(subtotal=3000, total=3000), self._lines(stripe_line, 3)
    )

    make_pipeline(settings=replace(invoice_settings, line_item_limit=2)).run(
      "in_test_001"
    )

    invoice = _invoices(db_session)[0]
    assert invoice.line_items[-1].description == "Further line items"
    assert invoice.line_items[-1].amount_cents == 1000

  def test_listing_within_limit_has_no_summary(
    self, db_session, seed_sponsorship, payment_provider, stripe_invoice, stripe_line,
    make_pipeline, invoice_settings,
  ):
    seed_sponsorship()
    payment_provider.add_invoice(
      stripe_invoice(subtotal=2000, total=2000), self._lines(stripe_line, 2)
    )

    make_pipeline(settings=replace(invoice_settings, line_item_limit=2)).run(
      "in_test_001"
    )

    invoice = _invoices(db_session)[0]
    assert len(invoice.line_items) == 2
    assert not any(item.line_metadata["summary"] for item in invoice.line_items)
