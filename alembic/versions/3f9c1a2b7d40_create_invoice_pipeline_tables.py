"""create invoice pipeline tables

Revision ID: 3f9c1a2b7d40
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "3f9c1a2b7d40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  # Directory tables read by the pipeline
  op.create_table(
    "cleaners",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("business_name", sa.String(), nullable=True),
    sa.Column("contact_email", sa.String(), nullable=True),
    sa.Column("email", sa.String(), nullable=True),
    sa.Column("address", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_table(
    "businesses",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=True),
    sa.Column("email", sa.String(), nullable=True),
    sa.Column("address", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_table(
    "service_areas",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("business_id", sa.String(), nullable=True),
    sa.Column("name", sa.String(), nullable=True),
    sa.Column("area_km2", sa.Float(), nullable=True),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_table(
    "categories",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("slug", sa.String(), nullable=True),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_table(
    "service_categories",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_table(
    "sponsored_subscriptions",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("stripe_subscription_id", sa.String(), nullable=False),
    sa.Column("stripe_customer_id", sa.String(), nullable=True),
    sa.Column("business_id", sa.String(), nullable=True),
    sa.Column("area_id", sa.String(), nullable=True),
    sa.Column("category_id", sa.String(), nullable=True),
    sa.Column("slot", sa.Integer(), nullable=True),
    sa.Column("price_monthly_pennies", sa.Integer(), nullable=True),
    sa.Column("currency", sa.String(length=3), nullable=True),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("current_period_end", sa.DateTime(), nullable=True),
    sa.Column("created_at", sa.DateTime(), nullable=False),
    sa.Column("updated_at", sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("stripe_subscription_id"),
  )
  op.create_index(
    "idx_sponsored_subscription_business",
    "sponsored_subscriptions",
    ["business_id"],
    unique=False,
  )
  op.create_index(
    "idx_sponsored_subscription_area",
    "sponsored_subscriptions",
    ["area_id", "category_id"],
    unique=False,
  )

  # Invoices owned by the pipeline; the unique keys stop duplicate delivery
  op.create_table(
    "invoices",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("stripe_invoice_id", sa.String(), nullable=False),
    sa.Column("stripe_payment_intent_id", sa.String(), nullable=True),
    sa.Column("stripe_subscription_id", sa.String(), nullable=True),
    sa.Column("invoice_number", sa.String(), nullable=False),
    sa.Column("business_id", sa.String(), nullable=False),
    sa.Column("area_id", sa.String(), nullable=True),
    sa.Column("category_id", sa.String(), nullable=True),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("currency", sa.String(length=3), nullable=False),
    sa.Column("subtotal_cents", sa.Integer(), nullable=False),
    sa.Column("tax_cents", sa.Integer(), nullable=False),
    sa.Column("total_cents", sa.Integer(), nullable=False),
    sa.Column("billing_period_start", sa.DateTime(), nullable=True),
    sa.Column("billing_period_end", sa.DateTime(), nullable=True),
    sa.Column("supplier_name", sa.String(), nullable=False),
    sa.Column("supplier_address", sa.String(), nullable=True),
    sa.Column("supplier_email", sa.String(), nullable=True),
    sa.Column("supplier_vat_number", sa.String(), nullable=True),
    sa.Column("customer_name", sa.String(), nullable=True),
    sa.Column("customer_email", sa.String(), nullable=False),
    sa.Column("customer_address", sa.String(), nullable=True),
    sa.Column("area_name", sa.String(), nullable=True),
    sa.Column("industry_name", sa.String(), nullable=True),
    sa.Column("area_km2", sa.Float(), nullable=True),
    sa.Column("rate_per_km2_cents", sa.Integer(), nullable=True),
    sa.Column("pdf_storage_bucket", sa.String(), nullable=True),
    sa.Column("pdf_storage_path", sa.String(), nullable=True),
    sa.Column("pdf_signed_url", sa.String(), nullable=True),
    sa.Column("emailed_at", sa.DateTime(), nullable=True),
    sa.Column("email_message_id", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(), nullable=False),
    sa.Column("updated_at", sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("stripe_invoice_id"),
    sa.UniqueConstraint("invoice_number"),
  )
  op.create_index("idx_invoice_business", "invoices", ["business_id"], unique=False)
  op.create_index("idx_invoice_status", "invoices", ["status"], unique=False)
  op.create_index(
    "idx_invoice_period",
    "invoices",
    ["billing_period_start", "billing_period_end"],
    unique=False,
  )

  op.create_table(
    "invoice_line_items",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("invoice_id", sa.String(), nullable=False),
    sa.Column("position", sa.Integer(), nullable=False),
    sa.Column("description", sa.String(), nullable=False),
    sa.Column("quantity", sa.Integer(), nullable=False),
    sa.Column("unit_price_cents", sa.Integer(), nullable=False),
    sa.Column("amount_cents", sa.Integer(), nullable=False),
    sa.Column("period_start", sa.DateTime(), nullable=True),
    sa.Column("period_end", sa.DateTime(), nullable=True),
    sa.Column("line_metadata", sa.JSON(), nullable=True),
    sa.Column("created_at", sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(
    "idx_invoice_line_item_invoice",
    "invoice_line_items",
    ["invoice_id"],
    unique=False,
  )


def downgrade() -> None:
  op.drop_index("idx_invoice_line_item_invoice", table_name="invoice_line_items")
  op.drop_table("invoice_line_items")
  op.drop_index("idx_invoice_period", table_name="invoices")
  op.drop_index("idx_invoice_status", table_name="invoices")
  op.drop_index("idx_invoice_business", table_name="invoices")
  op.drop_table("invoices")
  op.drop_index("idx_sponsored_subscription_area", table_name="sponsored_subscriptions")
  op.drop_index(
    "idx_sponsored_subscription_business", table_name="sponsored_subscriptions"
  )
  op.drop_table("sponsored_subscriptions")
  op.drop_table("service_categories")
  op.drop_table("categories")
  op.drop_table("service_areas")
  op.drop_table("businesses")
  op.drop_table("cleaners")
