from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, scoped_session, sessionmaker

from sponsorbill.config import env


def get_database_url():
  """Get database URL with SSL configuration if needed."""
  database_url = env.DATABASE_URL

  if not database_url.startswith("postgresql"):
    return database_url

  # Add SSL parameters for staging/prod environments
  if (env.is_staging() or env.is_production()) and "?" not in database_url:
    database_url += "?sslmode=require"
  elif (env.is_staging() or env.is_production()) and "sslmode" not in database_url:
    database_url += "&sslmode=require"

  return database_url


def _engine_options(database_url: str) -> dict:
  """Pool settings apply to server databases only."""
  if database_url.startswith("sqlite"):
    return {"echo": env.DATABASE_ECHO}
  return {
    "pool_size": env.DATABASE_POOL_SIZE,
    "max_overflow": env.DATABASE_MAX_OVERFLOW,
    "pool_timeout": env.DATABASE_POOL_TIMEOUT,
    "pool_recycle": env.DATABASE_POOL_RECYCLE,
    "pool_pre_ping": True,
    "echo": env.DATABASE_ECHO,
  }


engine = create_engine(get_database_url(), **_engine_options(get_database_url()))
SessionFactory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
session = scoped_session(SessionFactory)


class Base(DeclarativeBase):
  """Base class for all models."""

  pass


def get_db_session():
  """Yield a session and release it back to the registry afterwards."""
  db = session()
  try:
    yield db
  finally:
    session.remove()
