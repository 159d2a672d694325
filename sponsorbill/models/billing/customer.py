"""Customer directory models.

Sponsoring businesses live in two tables: cleaners registered through the
sponsorship flow and the older generic business directory. Both are keyed by
the same business id.
"""

from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import Session

from ...database import Base


class Cleaner(Base):
  """Cleaning business profile."""

  __tablename__ = "cleaners"

  id = Column(String, primary_key=True)

  business_name = Column(String, nullable=True)
  contact_email = Column(String, nullable=True)
  email = Column(String, nullable=True)
  address = Column(String, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  def __repr__(self) -> str:
    return f"<Cleaner {self.id} {self.business_name!r}>"

  @classmethod
  def get_by_id(cls, business_id: str, session: Session) -> Optional["Cleaner"]:
    return session.query(cls).filter(cls.id == business_id).first()


class Business(Base):
  """Generic business directory entry."""

  __tablename__ = "businesses"

  id = Column(String, primary_key=True)

  name = Column(String, nullable=True)
  email = Column(String, nullable=True)
  address = Column(String, nullable=True)

  created_at = Column(DateTime, default=lambda: datetime.now(UTC), nullable=False)

  def __repr__(self) -> str:
    return f"<Business {self.id} {self.name!r}>"

  @classmethod
  def get_by_id(cls, business_id: str, session: Session) -> Optional["Business"]:
    return session.query(cls).filter(cls.id == business_id).first()
