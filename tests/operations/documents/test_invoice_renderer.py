"""Tests for the invoice PDF renderer."""

import base64
from dataclasses import replace
from datetime import date, datetime

import pytest

from sponsorbill.config.invoicing import SupplierDetails
from sponsorbill.exceptions import DocumentRenderError
from sponsorbill.operations.billing.types import DocumentLine, InvoiceSnapshot
from sponsorbill.operations.documents import InvoiceDocumentRenderer
from sponsorbill.operations.documents.invoice_renderer import (
  AMOUNT_RIGHT,
  FOOTER_RESERVE,
)
from sponsorbill.operations.documents.text_layout import (
  ReportLabFontMetrics,
  text_width,
)

# 1x1 PNG
PNG_PIXEL = base64.b64decode(
  "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA"
  "60e6kgAAAABJRU5ErkJggg=="
)


@pytest.fixture
def snapshot():
  return InvoiceSnapshot(
    invoice_number="INV-2026-03-0001",
    issued_on=date(2026, 3, 15),
    currency="gbp",
    supplier=SupplierDetails(
      name="Kleanly",
      address="1 High Street, London, N1 1AA",
      email="kleanly@nibing.uy",
      vat_number="GB123456789",
      sender="Kleanly <kleanly@nibing.uy>",
    ),
    customer_name="Sparkle Cleaning Ltd",
    customer_email="owner@sparkle.example",
    customer_address="12 Market Road, Leeds, LS1 4AB",
    industry_name="Domestic Cleaning",
    area_name="Leeds",
    lines=[
      DocumentLine(
        description="Domestic Cleaning - Leeds",
        amount_cents=2500,
        area_km2=25.0,
        rate_per_km2_cents=100,
      )
    ],
    subtotal_cents=2500,
    tax_cents=0,
    total_cents=2500,
    period_start=datetime(2026, 3, 1),
    period_end=datetime(2026, 4, 1),
    processor_reference="in_test_001",
  )


@pytest.fixture
def renderer():
  return InvoiceDocumentRenderer()


def _all_text(document):
  return [run.text for run in document.text_runs]


def _assert_above_footer(document):
  footer_text = {"Thank you for your business."} | {
    f"Page {page}" for page in range(1, document.page_count + 1)
  }
  for run in document.text_runs:
    if run.text not in footer_text:
      assert run.y >= FOOTER_RESERVE, run


class TestRender:
  def test_produces_pdf(self, renderer, snapshot):
    document = renderer.render(snapshot)

    assert document.content.startswith(b"%PDF")
    assert document.page_count == 1

  def test_header_and_parties(self, renderer, snapshot):
    text = _all_text(renderer.render(snapshot))

    assert "Kleanly" in text
    assert "INV-2026-03-0001" in text
    assert "2026-03-15" in text
    assert "2026-03-01 - 2026-04-01" in text
    assert "VAT: GB123456789" in text
    assert "Sparkle Cleaning Ltd" in text
    assert "LS1 4AB" in text
    assert "Domestic Cleaning - Leeds" in text

  def test_line_columns(self, renderer, snapshot):
    text = _all_text(renderer.render(snapshot))

    assert "25.000 km²" in text
    assert "£1.00" in text
    assert text.count("£25.00") == 3  # line amount, subtotal and total

  def test_amounts_right_aligned(self, renderer, snapshot):
    document = renderer.render(snapshot)
    bold = ReportLabFontMetrics("Helvetica-Bold")

    total_run = [run for run in document.text_runs if run.text == "£25.00"][-1]

    assert total_run.font == "Helvetica-Bold"
    assert total_run.x + text_width("£25.00", bold, total_run.size) == (
      pytest.approx(AMOUNT_RIGHT, abs=0.01)
    )

  def test_vat_row_only_when_taxed(self, renderer, snapshot):
    untaxed = _all_text(renderer.render(snapshot))
    taxed = _all_text(
      renderer.render(
        replace(snapshot, tax_cents=500, total_cents=3000, vat_rate=20.0)
      )
    )

    assert not any(text.startswith("VAT (") for text in untaxed)
    assert "VAT (20%)" in taxed
    assert "£30.00" in taxed

  def test_missing_metric_drawn_as_dash(self, renderer, snapshot):
    line = DocumentLine(description="Adjustment", amount_cents=-500, proration=True)

    text = _all_text(renderer.render(replace(snapshot, lines=[line])))

    assert "Adjustment (proration)" in text
    assert "-£5.00" in text
    assert text.count("-") >= 2

  def test_unsupported_characters_are_sanitized(self, renderer, snapshot):
    document = renderer.render(
      replace(snapshot, customer_name="Łukasz’s Cleaning → Leeds 🧽")
    )

    assert "ukasz's Cleaning -> Leeds" in _all_text(document)

  def test_unprintable_names_fall_back_to_labels(self, renderer, snapshot):
    supplier = replace(snapshot.supplier, name="株式会社")

    text = _all_text(
      renderer.render(replace(snapshot, customer_name="Ив Иванов", supplier=supplier))
    )

    assert "Customer" in text
    assert "Invoice" in text

  def test_logo_drawn(self, renderer, snapshot):
    document = renderer.render(replace(snapshot, logo=PNG_PIXEL))

    assert document.content.startswith(b"%PDF")

  def test_unreadable_logo_skipped(self, renderer, snapshot):
    document = renderer.render(replace(snapshot, logo=b"not an image"))

    assert document.page_count == 1


class TestPagination:
  def test_many_lines_paginate(self, renderer, snapshot):
    lines = [
      DocumentLine(description=f"Sponsored listing {i}", amount_cents=100)
      for i in range(60)
    ]

    document = renderer.render(
      replace(snapshot, lines=lines, subtotal_cents=6000, total_cents=6000)
    )

    assert document.page_count > 1
    assert f"Page {document.page_count}" in document.page_text(document.page_count)
    assert "Invoice INV-2026-03-0001 (continued)" in document.page_text(2)
    assert "Sponsored listing 59" in _all_text(document)
    assert "£60.00" in document.page_text(document.page_count)

  def test_content_stays_above_footer(self, renderer, snapshot):
    lines = [
      DocumentLine(description=f"Sponsored listing {i}", amount_cents=100)
      for i in range(60)
    ]

    document = renderer.render(replace(snapshot, lines=lines))

    _assert_above_footer(document)

  def test_tall_customer_address_continues_on_next_page(self, renderer, snapshot):
    address = ", ".join(f"Line {i}" for i in range(60))

    document = renderer.render(replace(snapshot, customer_address=address))

    assert document.page_count > 1
    _assert_above_footer(document)
    text = _all_text(document)
    assert all(f"Line {i}" in text for i in range(60))
    assert "Invoice INV-2026-03-0001 (continued)" in document.page_text(2)
    assert "£25.00" in document.page_text(document.page_count)

  def test_tall_supplier_address_continues_on_next_page(self, renderer, snapshot):
    supplier = replace(
      snapshot.supplier, address=", ".join(f"Unit {i}" for i in range(60))
    )

    document = renderer.render(replace(snapshot, supplier=supplier))

    assert document.page_count > 1
    _assert_above_footer(document)
    text = _all_text(document)
    assert all(f"Unit {i}" in text for i in range(60))
    assert "Sparkle Cleaning Ltd" in text

  def test_long_descriptions_wrap_to_two_lines(self, renderer, snapshot):
    description = " ".join(["Sponsored"] * 60)
    line = DocumentLine(description=description, amount_cents=2500)

    document = renderer.render(replace(snapshot, lines=[line]))

    rows = [run for run in document.text_runs if run.text.startswith("Sponsored")]
    assert len(rows) == 2
    assert rows[-1].text.endswith("...")


class TestFailures:
  def test_render_failure_wrapped(self, snapshot):
    renderer = InvoiceDocumentRenderer(font_name="NoSuchFont")

    with pytest.raises(DocumentRenderError) as exc_info:
      renderer.render(snapshot)

    assert exc_info.value.details["invoice_number"] == "INV-2026-03-0001"
