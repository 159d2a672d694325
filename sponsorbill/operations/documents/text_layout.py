"""
Text measurement and line breaking for invoice documents.

Everything here is pure: no canvas, no I/O. The renderer sanitizes every
string with ``sanitize_text`` before measuring or drawing it, so the standard
PDF fonts (WinAnsi encoded) never receive a glyph they cannot show.
"""

import unicodedata
from typing import List, Optional, Protocol

from reportlab.pdfbase.pdfmetrics import stringWidth

from ...exceptions import UnsupportedCharacterError

FONT_ENCODING = "cp1252"
ELLIPSIS = "..."

# Typographic characters mapped to ASCII equivalents before encoding checks
SUBSTITUTIONS = {
  "→": "->",
  "←": "<-",
  "↔": "<->",
  "⇒": "=>",
  "‘": "'",
  "’": "'",
  "‚": "'",
  "′": "'",
  "“": '"',
  "”": '"',
  "„": '"',
  "″": '"',
  "‐": "-",
  "‑": "-",
  "‒": "-",
  "–": "-",
  "—": "-",
  "―": "-",
  "−": "-",
  "•": "*",
  "●": "*",
  "…": ELLIPSIS,
  "\u00a0": " ",
  "\u2002": " ",
  "\u2003": " ",
  "\u2009": " ",
  "\u202f": " ",
  "\u200b": "",
  "\ufeff": "",
  "≤": "<=",
  "≥": ">=",
}


def _encodable(char: str) -> bool:
  try:
    char.encode(FONT_ENCODING)
  except UnicodeEncodeError:
    return False
  return True


def sanitize_text(value: Optional[str]) -> str:
  """Reduce arbitrary text to characters the document fonts can encode.

  Typographic characters get ASCII substitutes and control characters are
  dropped. Anything else outside the font encoding is folded to its ASCII
  decomposition, or removed when it has none.
  """
  if not value:
    return ""

  out = []
  for char in str(value):
    if char in SUBSTITUTIONS:
      out.append(SUBSTITUTIONS[char])
      continue
    if char in "\t\n\r\v\f":
      out.append(" ")
      continue
    if unicodedata.category(char).startswith("C"):
      continue
    if _encodable(char):
      out.append(char)
      continue
    folded = unicodedata.normalize("NFKD", char)
    out.append("".join(c for c in folded if c.isascii() and c.isprintable()))

  return "".join(out)


class FontMetrics(Protocol):
  """Glyph metrics for one font face."""

  font_name: str

  def encodable(self, char: str) -> bool: ...

  def advance(self, char: str, size: float) -> float: ...


class ReportLabFontMetrics:
  """Metrics for a standard PDF font as registered in reportlab."""

  def __init__(self, font_name: str = "Helvetica"):
    self.font_name = font_name

  def encodable(self, char: str) -> bool:
    return _encodable(char)

  def advance(self, char: str, size: float) -> float:
    return stringWidth(char, self.font_name, size)


def text_width(text: str, metrics: FontMetrics, size: float) -> float:
  """Sum of per-character advances.

  Raises:
      UnsupportedCharacterError: a character outside the font encoding
  """
  width = 0.0
  for char in text:
    if not metrics.encodable(char):
      raise UnsupportedCharacterError(char, metrics.font_name)
    width += metrics.advance(char, size)
  return width


def right_align_x(text: str, metrics: FontMetrics, size: float, right_edge: float) -> float:
  """X coordinate that makes ``text`` end exactly at ``right_edge``."""
  return right_edge - text_width(text, metrics, size)


def _hard_break(word: str, metrics: FontMetrics, size: float, max_width: float) -> List[str]:
  """Split a word wider than the column into width-safe chunks."""
  chunks = []
  current = ""
  current_width = 0.0
  for char in word:
    advance = text_width(char, metrics, size)
    if current and current_width + advance > max_width:
      chunks.append(current)
      current, current_width = "", 0.0
    current += char
    current_width += advance
  if current:
    chunks.append(current)
  return chunks


def _ellipsize(line: str, metrics: FontMetrics, size: float, max_width: float) -> str:
  line = line.rstrip()
  while line and text_width(line + ELLIPSIS, metrics, size) > max_width:
    line = line[:-1].rstrip()
  return line + ELLIPSIS


def wrap_text(
  text: str,
  metrics: FontMetrics,
  size: float,
  max_width: float,
  max_lines: Optional[int] = None,
) -> List[str]:
  """Greedy word wrap within ``max_width``.

  Words wider than the column are broken at character boundaries. When
  ``max_lines`` is given, surplus lines are dropped and the last kept line
  ends with an ellipsis that still fits the column.
  """
  words = text.split()
  if not words:
    return [""]

  pieces = []
  for word in words:
    if text_width(word, metrics, size) <= max_width:
      pieces.append(word)
    else:
      pieces.extend(_hard_break(word, metrics, size, max_width))

  lines = []
  current = ""
  for piece in pieces:
    candidate = f"{current} {piece}" if current else piece
    if not current or text_width(candidate, metrics, size) <= max_width:
      current = candidate
    else:
      lines.append(current)
      current = piece
  lines.append(current)

  if max_lines is not None and len(lines) > max_lines:
    lines = lines[:max_lines]
    lines[-1] = _ellipsize(lines[-1], metrics, size, max_width)

  return lines


def fit_line(text: str, metrics: FontMetrics, size: float, max_width: float) -> str:
  """Single line clamped to ``max_width`` with an ellipsis when cut."""
  return wrap_text(text, metrics, size, max_width, max_lines=1)[0]
