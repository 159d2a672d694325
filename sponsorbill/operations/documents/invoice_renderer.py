"""
Invoice PDF renderer.

Composes an A4 invoice (header, parties, line-item table, totals, footer) on
a reportlab canvas. Positions are in points with the origin at the bottom
left, so the cursor ``y`` decreases as content is added. Every string goes
through ``sanitize_text`` before it is measured or drawn.
"""

import io
from typing import List, Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from ...exceptions import DocumentRenderError
from ...logger import documents_logger as logger, performance_timer
from ...utils.formatting import (
  area_headline,
  format_date,
  format_money,
  format_period,
  split_address_lines,
)
from ..billing.types import DocumentLine, InvoiceSnapshot, RenderedDocument, TextRun
from .text_layout import (
  FontMetrics,
  ReportLabFontMetrics,
  fit_line,
  right_align_x,
  sanitize_text,
  text_width,
  wrap_text,
)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 48
RIGHT_EDGE = PAGE_WIDTH - MARGIN

BODY_SIZE = 10.5
TITLE_SIZE = 22
LINE_GAP = 14
LOGO_HEIGHT = 64
LOGO_MAX_WIDTH = 220

# Content never descends below this line; the footer lives underneath it
FOOTER_RESERVE = 84
FOOTER_Y = 60
PAGE_NUMBER_Y = 40

# Description is left aligned, numeric columns are right aligned
DESCRIPTION_X = MARGIN
DESCRIPTION_WIDTH = 255
AREA_RIGHT = 395
RATE_RIGHT = 480
AMOUNT_RIGHT = RIGHT_EDGE
DESCRIPTION_MAX_LINES = 2
DESCRIPTION_LEADING = 12
ROW_HEIGHT = 32

TOTALS_LABEL_RIGHT = RIGHT_EDGE - 140
TOTALS_LEADING = 16

# Room for the "Billed to" and "From" labels plus name and email
PARTIES_MIN_HEIGHT = 18 + 2 * LINE_GAP
# Room for the area headline, the column header and one row
TABLE_MIN_HEIGHT = 18 + 24 + 26 + ROW_HEIGHT

RIGHT_COLUMN_X = PAGE_WIDTH / 2 + 20
RIGHT_COLUMN_WIDTH = RIGHT_EDGE - RIGHT_COLUMN_X
LEFT_COLUMN_WIDTH = RIGHT_COLUMN_X - MARGIN - 20


class _PageWriter:
  """Canvas wrapper that sanitizes, measures and records every text run."""

  def __init__(self, pdf: canvas.Canvas, regular: FontMetrics, bold: FontMetrics):
    self.pdf = pdf
    self.fonts = {"regular": regular, "bold": bold}
    self.page = 1
    self.runs: List[TextRun] = []

  def text(
    self,
    value: str,
    x: float,
    y: float,
    size: float = BODY_SIZE,
    weight: str = "regular",
  ) -> None:
    value = sanitize_text(value)
    if not value:
      return
    metrics = self.fonts[weight]
    # Measure first so unencodable text fails before anything is drawn
    text_width(value, metrics, size)
    self.pdf.setFont(metrics.font_name, size)
    self.pdf.drawString(x, y, value)
    self.runs.append(
      TextRun(self.page, round(x, 2), round(y, 2), value, metrics.font_name, size)
    )

  def text_right(
    self,
    value: str,
    right: float,
    y: float,
    size: float = BODY_SIZE,
    weight: str = "regular",
  ) -> None:
    value = sanitize_text(value)
    x = right_align_x(value, self.fonts[weight], size, right)
    self.text(value, x, y, size, weight)

  def text_centered(
    self, value: str, y: float, size: float, weight: str = "bold"
  ) -> None:
    value = sanitize_text(value)
    width = text_width(value, self.fonts[weight], size)
    self.text(value, (PAGE_WIDTH - width) / 2, y, size, weight)

  def fitted(
    self,
    value: str,
    x: float,
    y: float,
    max_width: float,
    size: float = BODY_SIZE,
    weight: str = "regular",
  ) -> None:
    line = fit_line(sanitize_text(value), self.fonts[weight], size, max_width)
    self.text(line, x, y, size, weight)

  def rule(self, y: float, start: float = MARGIN, end: float = RIGHT_EDGE) -> None:
    self.pdf.setLineWidth(1)
    self.pdf.line(start, y, end, y)

  def footer(self) -> None:
    self.text("Thank you for your business.", MARGIN, FOOTER_Y, size=10)
    self.text_right(f"Page {self.page}", RIGHT_EDGE, PAGE_NUMBER_Y, size=9)

  def next_page(self) -> None:
    self.footer()
    self.pdf.showPage()
    self.page += 1


class InvoiceDocumentRenderer:
  """Render an ``InvoiceSnapshot`` into PDF bytes."""

  def __init__(
    self, font_name: str = "Helvetica", bold_font_name: str = "Helvetica-Bold"
  ):
    self.regular = ReportLabFontMetrics(font_name)
    self.bold = ReportLabFontMetrics(bold_font_name)

  @performance_timer(logger, "documents", "render")
  def render(self, snapshot: InvoiceSnapshot) -> RenderedDocument:
    """Render the whole document or raise.

    Raises:
        DocumentRenderError: layout or encoding failed, or the output is empty
    """
    buffer = io.BytesIO()
    try:
      pdf = canvas.Canvas(buffer, pagesize=A4)
      pdf.setTitle(sanitize_text(f"Invoice {snapshot.invoice_number}"))
      pdf.setAuthor(sanitize_text(snapshot.supplier.name))
      writer = _PageWriter(pdf, self.regular, self.bold)

      y = self._draw_header(writer, snapshot)
      y = self._draw_parties(writer, snapshot, y)
      y = self._draw_table(writer, snapshot, y)
      self._draw_totals(writer, snapshot, y)

      writer.footer()
      pdf.save()
    except DocumentRenderError:
      raise
    except Exception as e:
      raise DocumentRenderError(
        f"Failed to render invoice {snapshot.invoice_number}: {e}",
        invoice_number=snapshot.invoice_number,
      ) from e

    content = buffer.getvalue()
    if not content:
      raise DocumentRenderError(
        "Renderer produced an empty document",
        invoice_number=snapshot.invoice_number,
      )

    logger.debug(
      f"Rendered invoice {snapshot.invoice_number}: {writer.page} page(s), "
      f"{len(content)} bytes",
      extra={"invoice_number": snapshot.invoice_number},
    )
    return RenderedDocument(
      content=content, page_count=writer.page, text_runs=writer.runs
    )

  # ==========================================================================
  # Sections
  # ==========================================================================

  def _draw_logo(self, writer: _PageWriter, logo: Optional[bytes], y: float) -> float:
    if not logo:
      return y
    try:
      image = ImageReader(io.BytesIO(logo))
      width, height = image.getSize()
    except Exception as e:
      logger.warning(f"Skipping unreadable invoice logo: {e}")
      return y
    if not width or not height:
      return y
    scale = min(LOGO_HEIGHT / height, LOGO_MAX_WIDTH / width)
    draw_w, draw_h = width * scale, height * scale
    writer.pdf.drawImage(
      image,
      (PAGE_WIDTH - draw_w) / 2,
      y - draw_h,
      width=draw_w,
      height=draw_h,
      mask="auto",
    )
    return y - draw_h - 10

  def _draw_header(self, writer: _PageWriter, snapshot: InvoiceSnapshot) -> float:
    supplier = snapshot.supplier
    y = self._draw_logo(writer, snapshot.logo, PAGE_HEIGHT - MARGIN)

    title = sanitize_text(supplier.name).strip() or "Invoice"
    writer.text_centered(title, y - TITLE_SIZE, TITLE_SIZE)
    y -= TITLE_SIZE + LINE_GAP

    meta_rows = [
      ("Invoice #", snapshot.invoice_number),
      ("Invoice date", format_date(snapshot.issued_on)),
      ("Billing period", format_period(snapshot.period_start, snapshot.period_end)),
      ("Industry", snapshot.industry_name),
      ("Reference", snapshot.processor_reference),
    ]

    right_y = y - LINE_GAP
    for label, value in meta_rows:
      if not value:
        continue
      writer.text_right(label, RIGHT_EDGE, right_y, weight="bold")
      right_y -= LINE_GAP
      value = fit_line(sanitize_text(value), self.regular, BODY_SIZE, RIGHT_COLUMN_WIDTH)
      writer.text_right(value, RIGHT_EDGE, right_y)
      right_y -= 18

    # The left column may run onto further pages; the right one never does
    page = writer.page
    left_y = y - LINE_GAP
    supplier_lines = split_address_lines(supplier.address)
    if supplier.email:
      supplier_lines.append(supplier.email)
    if supplier.vat_number:
      supplier_lines.append(f"VAT: {supplier.vat_number}")
    for line in supplier_lines:
      left_y = self._line_y(writer, snapshot, left_y)
      writer.fitted(line, MARGIN, left_y, LEFT_COLUMN_WIDTH)
      left_y -= LINE_GAP

    divider_y = (left_y if writer.page != page else min(left_y, right_y)) - 12
    writer.rule(divider_y)
    return divider_y

  def _draw_parties(
    self, writer: _PageWriter, snapshot: InvoiceSnapshot, y: float
  ) -> float:
    top = y - 22
    if top - PARTIES_MIN_HEIGHT < FOOTER_RESERVE:
      writer.next_page()
      top = self._continuation_top(writer, snapshot)

    supplier = snapshot.supplier
    writer.text("From", RIGHT_COLUMN_X, top, size=12, weight="bold")
    right_y = top - 18
    writer.fitted(
      supplier.name, RIGHT_COLUMN_X, right_y, RIGHT_COLUMN_WIDTH, size=11, weight="bold"
    )
    right_y -= LINE_GAP
    if supplier.email:
      writer.fitted(supplier.email, RIGHT_COLUMN_X, right_y, RIGHT_COLUMN_WIDTH)
      right_y -= LINE_GAP

    page = writer.page
    writer.text("Billed to", MARGIN, top, size=12, weight="bold")
    left_y = top - 18
    writer.fitted(
      sanitize_text(snapshot.customer_name).strip() or "Customer",
      MARGIN,
      left_y,
      LEFT_COLUMN_WIDTH,
      size=11,
      weight="bold",
    )
    left_y -= LINE_GAP
    if snapshot.customer_email:
      writer.fitted(snapshot.customer_email, MARGIN, left_y, LEFT_COLUMN_WIDTH)
      left_y -= LINE_GAP
    for line in split_address_lines(snapshot.customer_address):
      for wrapped in wrap_text(
        sanitize_text(line), self.regular, BODY_SIZE, LEFT_COLUMN_WIDTH
      ):
        left_y = self._line_y(writer, snapshot, left_y)
        writer.text(wrapped, MARGIN, left_y)
        left_y -= LINE_GAP

    if writer.page != page:
      return left_y
    return min(left_y, right_y)

  def _line_y(self, writer: _PageWriter, snapshot: InvoiceSnapshot, y: float) -> float:
    """Baseline for the next text line, on a new page when ``y`` is too low."""
    if y < FOOTER_RESERVE:
      writer.next_page()
      return self._continuation_top(writer, snapshot)
    return y

  def _draw_table_header(self, writer: _PageWriter, y: float) -> float:
    writer.text("Description", DESCRIPTION_X, y, weight="bold")
    writer.text_right("Area covered", AREA_RIGHT, y, weight="bold")
    writer.text_right("Price per km²", RATE_RIGHT, y, weight="bold")
    writer.text_right("Amount", AMOUNT_RIGHT, y, weight="bold")
    y -= 8
    writer.rule(y)
    return y - 18

  def _continuation_top(self, writer: _PageWriter, snapshot: InvoiceSnapshot) -> float:
    y = PAGE_HEIGHT - MARGIN - 12
    writer.text(
      f"Invoice {snapshot.invoice_number} (continued)",
      MARGIN,
      y,
      size=12,
      weight="bold",
    )
    return y - 30

  def _draw_table(
    self, writer: _PageWriter, snapshot: InvoiceSnapshot, y: float
  ) -> float:
    if y - TABLE_MIN_HEIGHT < FOOTER_RESERVE:
      writer.next_page()
      y = self._continuation_top(writer, snapshot)

    y -= 18
    headline = area_headline(snapshot.industry_name, snapshot.area_name)
    if headline:
      writer.fitted(headline, MARGIN, y, RIGHT_EDGE - MARGIN, size=12, weight="bold")
      y -= 24

    y = self._draw_table_header(writer, y)

    for line in snapshot.lines:
      description = self._description_lines(line)
      row_height = (len(description) - 1) * DESCRIPTION_LEADING + ROW_HEIGHT
      if y - row_height < FOOTER_RESERVE:
        writer.next_page()
        y = self._draw_table_header(writer, self._continuation_top(writer, snapshot))
      self._draw_row(writer, snapshot.currency, line, description, y)
      y -= row_height

    return y

  def _description_lines(self, line: DocumentLine) -> List[str]:
    text = sanitize_text(line.description)
    if line.proration:
      text = f"{text} (proration)"
    return wrap_text(
      text, self.regular, BODY_SIZE, DESCRIPTION_WIDTH, max_lines=DESCRIPTION_MAX_LINES
    )

  def _draw_row(
    self,
    writer: _PageWriter,
    currency: str,
    line: DocumentLine,
    description: List[str],
    y: float,
  ) -> None:
    for index, text in enumerate(description):
      writer.text(text, DESCRIPTION_X, y - index * DESCRIPTION_LEADING)

    area_text = "-"
    if line.area_km2 is not None:
      area_text = f"{line.area_km2:.3f} km²"
    rate_text = "-"
    if line.rate_per_km2_cents is not None:
      rate_text = format_money(line.rate_per_km2_cents, currency)

    writer.text_right(area_text, AREA_RIGHT, y)
    writer.text_right(rate_text, RATE_RIGHT, y)
    writer.text_right(format_money(line.amount_cents, currency), AMOUNT_RIGHT, y)

  def _draw_totals(
    self, writer: _PageWriter, snapshot: InvoiceSnapshot, y: float
  ) -> None:
    rows = [("Subtotal", snapshot.subtotal_cents, 11)]
    if snapshot.tax_cents:
      label = f"VAT ({snapshot.vat_rate:g}%)" if snapshot.vat_rate else "VAT"
      rows.append((label, snapshot.tax_cents, 11))
    rows.append(("Total", snapshot.total_cents, 13))

    needed = 14 + len(rows) * TOTALS_LEADING
    if y - needed < FOOTER_RESERVE:
      writer.next_page()
      y = self._continuation_top(writer, snapshot)

    y -= 10
    writer.rule(y + 14, start=TOTALS_LABEL_RIGHT - 80)
    for label, cents, size in rows:
      writer.text_right(label, TOTALS_LABEL_RIGHT, y, size=size, weight="bold")
      writer.text_right(
        format_money(cents, snapshot.currency), RIGHT_EDGE, y, size=size, weight="bold"
      )
      y -= TOTALS_LEADING
