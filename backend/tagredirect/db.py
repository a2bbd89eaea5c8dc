"""SQLAlchemy wiring for the lookup, handle and ingestion services.

The engine is created on first use so importing the app never needs a
reachable database.
"""
import os
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .errors import ConfigurationError

load_dotenv()

Base = declarative_base()

SQLITE_DEV_URL = "sqlite:///./dev.db"

_engine: Optional[Engine] = None
_SessionLocal = None
_tables_ready = False


def _running_in_production() -> bool:
    env = (os.getenv("APP_ENV") or os.getenv("VERCEL_ENV") or "").strip().lower()
    return env in ("production", "prod")


def database_url(raw: Optional[str] = None) -> str:
    """Pick the database URL, falling back to a local SQLite file outside production."""
    url = raw or os.getenv("DATABASE_URL")
    if not url:
        if _running_in_production():
            raise ConfigurationError("DATABASE_URL is missing in production.")
        return SQLITE_DEV_URL
    # hosted Postgres providers hand out the scheme SQLAlchemy no longer accepts
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        url = database_url()
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        _engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
    return _engine


def get_session_local():
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False)
    return _SessionLocal


def ensure_tables():
    """Create missing tables once per process."""
    global _tables_ready
    if _tables_ready:
        return
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=get_engine())
    _tables_ready = True


def get_db():
    db = get_session_local()()
    try:
        yield db
    finally:
        db.close()
