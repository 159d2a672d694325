"""Service areas and industry categories referenced by sponsorships."""

from typing import Optional

from sqlalchemy import Column, Float, String
from sqlalchemy.orm import Session

from ...database import Base


class ServiceArea(Base):
  """Named service area with its surface in km2."""

  __tablename__ = "service_areas"

  id = Column(String, primary_key=True)
  business_id = Column(String, nullable=True)
  name = Column(String, nullable=True)
  area_km2 = Column(Float, nullable=True)

  def __repr__(self) -> str:
    return f"<ServiceArea {self.id} {self.name!r}>"

  @classmethod
  def get_by_id(cls, area_id: str, session: Session) -> Optional["ServiceArea"]:
    return session.query(cls).filter(cls.id == area_id).first()


class Category(Base):
  """Industry category."""

  __tablename__ = "categories"

  id = Column(String, primary_key=True)
  name = Column(String, nullable=False)
  slug = Column(String, nullable=True)

  @classmethod
  def get_by_id(cls, category_id: str, session: Session) -> Optional["Category"]:
    return session.query(cls).filter(cls.id == category_id).first()


class ServiceCategory(Base):
  """Legacy category table still referenced by older sponsorships."""

  __tablename__ = "service_categories"

  id = Column(String, primary_key=True)
  name = Column(String, nullable=False)

  @classmethod
  def get_by_id(
    cls, category_id: str, session: Session
  ) -> Optional["ServiceCategory"]:
    return session.query(cls).filter(cls.id == category_id).first()
