"""Formatting helpers shared by the renderer and the invoice email."""

from datetime import UTC, date, datetime
from typing import List, Optional

CURRENCY_SYMBOLS = {
  "gbp": "£",
  "usd": "$",
  "eur": "€",
  "aud": "A$",
  "cad": "C$",
}

# Currencies the processor charges in whole units
ZERO_DECIMAL_CURRENCIES = {
  "bif",
  "clp",
  "djf",
  "gnf",
  "isk",
  "jpy",
  "kmf",
  "krw",
  "mga",
  "pyg",
  "rwf",
  "ugx",
  "vnd",
  "vuv",
  "xaf",
  "xof",
  "xpf",
}


def format_money(amount_cents: int, currency: str) -> str:
  """Format an amount in minor units for display, e.g. 1234 gbp -> '£12.34'."""
  code = (currency or "").lower()
  if code in ZERO_DECIMAL_CURRENCIES:
    number = f"{abs(amount_cents):,}"
  else:
    number = f"{abs(amount_cents) / 100:,.2f}"
  sign = "-" if amount_cents < 0 else ""
  symbol = CURRENCY_SYMBOLS.get(code)
  if symbol:
    return f"{sign}{symbol}{number}"
  return f"{sign}{code.upper() or '?'} {number}"


def from_unix(timestamp: Optional[int]) -> Optional[datetime]:
  """Convert a processor unix timestamp into a naive UTC datetime."""
  if timestamp is None:
    return None
  return datetime.fromtimestamp(int(timestamp), UTC).replace(tzinfo=None)


def format_date(value: Optional[date]) -> str:
  """ISO date (YYYY-MM-DD) or an empty string."""
  if value is None:
    return ""
  if isinstance(value, datetime):
    value = value.date()
  return value.isoformat()


def format_period(start: Optional[date], end: Optional[date]) -> str:
  """Billing period as 'start - end', tolerating a missing side."""
  start_text, end_text = format_date(start), format_date(end)
  if start_text and end_text:
    return f"{start_text} - {end_text}"
  return start_text or end_text


def split_address_lines(address: Optional[str], separator: str = ",") -> List[str]:
  """Split a one-line postal address into trimmed, non-empty lines."""
  if not address:
    return []
  lines = []
  for raw in address.replace("\r", "").split("\n"):
    lines.extend(part.strip() for part in raw.split(separator))
  return [line for line in lines if line]


def area_headline(industry_name: str, area_name: str, limit: int = 120) -> str:
  """'Industry - Area' headline, clamped for subjects and the document title."""
  headline = " - ".join(part for part in (industry_name, area_name) if part)
  if len(headline) > limit:
    headline = headline[: limit - 3].rstrip() + "..."
  return headline
