"""Utility functions and helpers for SponsorBill."""

# Display formatting shared by documents and emails
from .formatting import (
  area_headline,
  format_date,
  format_money,
  format_period,
  from_unix,
  split_address_lines,
)

# ULID utilities for time-ordered unique IDs
from .ulid import generate_prefixed_ulid, parse_ulid

__all__ = [
  "area_headline",
  "format_date",
  "format_money",
  "format_period",
  "from_unix",
  "generate_prefixed_ulid",
  "parse_ulid",
  "split_address_lines",
]
