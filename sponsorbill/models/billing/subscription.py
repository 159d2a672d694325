"""Sponsored subscription model - links a processor subscription to a sponsorship."""

from datetime import UTC, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, Index, Integer, String
from sqlalchemy.orm import Session

from ...database import Base
from ...utils.ulid import generate_prefixed_ulid


class SubscriptionStatus(str, Enum):
  """Processor subscription states mirrored on the link row."""

  INCOMPLETE = "incomplete"
  TRIALING = "trialing"
  ACTIVE = "active"
  PAST_DUE = "past_due"
  CANCELED = "canceled"
  UNPAID = "unpaid"


class SponsoredSubscription(Base):
  """A business sponsoring one category in one service area.

  Written by the subscription webhook; the invoice pipeline only reads it.
  """

  __tablename__ = "sponsored_subscriptions"

  id = Column(String, primary_key=True, default=lambda: generate_prefixed_ulid("ssub"))

  stripe_subscription_id = Column(String, unique=True, nullable=False)
  stripe_customer_id = Column(String, nullable=True)

  business_id = Column(String, nullable=True)
  area_id = Column(String, nullable=True)
  category_id = Column(String, nullable=True)
  slot = Column(Integer, nullable=True)

  price_monthly_pennies = Column(Integer, nullable=True)
  currency = Column(String(3), nullable=True)
  status = Column(String, default=SubscriptionStatus.ACTIVE.value, nullable=False)
  current_period_end = Column(DateTime, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)
  updated_at = Column(
    DateTime,
    default=lambda: datetime.now(UTC),
    onupdate=lambda: datetime.now(UTC),
    nullable=False,
  )

  __table_args__ = (
    Index("idx_sponsored_subscription_business", "business_id"),
    Index("idx_sponsored_subscription_area", "area_id", "category_id"),
  )

  def __repr__(self) -> str:
    return (
      f"<SponsoredSubscription {self.stripe_subscription_id} "
      f"business={self.business_id} slot={self.slot}>"
    )

  @classmethod
  def get_by_stripe_subscription_id(
    cls, stripe_subscription_id: str, session: Session
  ) -> Optional["SponsoredSubscription"]:
    """Get the link row for a processor subscription."""
    return (
      session.query(cls)
      .filter(cls.stripe_subscription_id == stripe_subscription_id)
      .first()
    )
