from .invoice_renderer import InvoiceDocumentRenderer
from .logo import fetch_logo
from .text_layout import (
  FontMetrics,
  ReportLabFontMetrics,
  fit_line,
  right_align_x,
  sanitize_text,
  text_width,
  wrap_text,
)

__all__ = [
  "FontMetrics",
  "InvoiceDocumentRenderer",
  "ReportLabFontMetrics",
  "fetch_logo",
  "fit_line",
  "right_align_x",
  "sanitize_text",
  "text_width",
  "wrap_text",
]
