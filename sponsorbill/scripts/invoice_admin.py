#!/usr/bin/env python3
"""
Invoice Admin CLI Tool

Manual invoice operations for support. Invoices are normally produced by the
billing webhook; use this to replay an event or inspect what was sent.

Usage:
    # Process (or retry) a Stripe invoice
    python -m sponsorbill.scripts.invoice_admin process in_1Nx...

    # Re-send an invoice that was already emailed
    python -m sponsorbill.scripts.invoice_admin process in_1Nx... --force

    # Show the stored invoice for a Stripe invoice
    python -m sponsorbill.scripts.invoice_admin status in_1Nx...

    # Check configuration
    python -m sponsorbill.scripts.invoice_admin check-config
"""

import argparse
import sys

from sponsorbill.config import env
from sponsorbill.database import get_db_session
from sponsorbill.models.billing import BillingInvoice
from sponsorbill.operations.billing.invoice_pipeline import create_invoice_pipeline
from sponsorbill.utils.formatting import format_money


def process_event(billing_event_id: str, force: bool = False) -> int:
  """Run the invoice pipeline for one billing event."""
  print(
    f"{'[FORCE] ' if force else ''}Processing billing event {billing_event_id}"
  )

  db = next(get_db_session())
  try:
    pipeline = create_invoice_pipeline(session=db)
    result = pipeline.run(billing_event_id, force=force)
  finally:
    db.close()

  print(f"Outcome: {result.outcome}")
  print(f"State: {result.state.value}")
  if result.invoice_number:
    print(f"Invoice: {result.invoice_number} ({result.invoice_id})")
    print(f"New invoice: {'yes' if result.created else 'no'}")
    print(f"Stored document: {'yes' if result.artifact_stored else 'no'}")
  return 0 if result.ok else 1


def show_status(billing_event_id: str) -> int:
  """Print the stored invoice for a billing event."""
  db = next(get_db_session())
  try:
    invoice = BillingInvoice.get_by_stripe_invoice_id(billing_event_id, db)
    if not invoice:
      print(f"No invoice stored for billing event {billing_event_id}")
      return 1

    print(f"Invoice #: {invoice.invoice_number}")
    print(f"Business: {invoice.business_id}")
    print(f"Customer: {invoice.customer_name} <{invoice.customer_email}>")
    print(f"Total: {format_money(invoice.total_cents, invoice.currency)}")
    print(f"Status: {invoice.status}")
    print(f"Emailed at: {invoice.emailed_at or 'not sent'}")
    if invoice.has_artifact:
      print(f"Document: s3://{invoice.pdf_storage_bucket}/{invoice.pdf_storage_path}")
    return 0
  finally:
    db.close()


def check_config() -> int:
  """Report missing or invalid configuration."""
  problems = env.validate()
  if not problems:
    print(f"Configuration OK ({env.ENVIRONMENT})")
    return 0

  print(f"Configuration problems ({env.ENVIRONMENT}):")
  for problem in problems:
    print(f"  - {problem}")
  return 1


def main():
  parser = argparse.ArgumentParser(
    description="Invoice administration tool for SponsorBill",
    formatter_class=argparse.RawDescriptionHelpFormatter,
    epilog=__doc__,
  )

  subparsers = parser.add_subparsers(dest="command", help="Command to run")

  process_parser = subparsers.add_parser(
    "process", help="Generate and email the invoice for a billing event"
  )
  process_parser.add_argument("billing_event_id", help="Stripe invoice ID")
  process_parser.add_argument(
    "--force",
    action="store_true",
    help="Re-send even if the invoice was already emailed",
  )

  status_parser = subparsers.add_parser(
    "status", help="Show the stored invoice for a billing event"
  )
  status_parser.add_argument("billing_event_id", help="Stripe invoice ID")

  subparsers.add_parser("check-config", help="Validate environment configuration")

  args = parser.parse_args()

  if not args.command:
    parser.print_help()
    return 0

  if args.command == "process":
    return process_event(args.billing_event_id, args.force)
  elif args.command == "status":
    return show_status(args.billing_event_id)
  elif args.command == "check-config":
    return check_config()
  return 0


if __name__ == "__main__":
  sys.exit(main())
