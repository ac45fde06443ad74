# app/database.py
"""
Database connection, session management, and table creation.
Uses SQLAlchemy with PostgreSQL (SQLite works for local runs and tests).
When DATABASE_URL is unset there is no engine at all: get_db() yields None
and the webhook accepts events without persisting them.
"""

from sqlalchemy import create_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from app.config import settings
from app.utils.logger import get_logger

logger = get_logger(__name__)

Base = declarative_base()


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "echo": False}
    return {
        "pool_pre_ping": True,       # Auto-reconnect if DB connection drops
        "pool_size": 10,
        "max_overflow": 20,
        "echo": False,               # Set True to log all SQL queries (debug only)
    }


if settings.DATABASE_URL:
    engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
else:
    engine = None
    SessionLocal = None


def get_db():
    """FastAPI dependency — yields a DB session (or None if unconfigured) and closes it after request."""
    if SessionLocal is None:
        yield None
        return
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """
    Creates all DB tables on startup. Safe to call multiple times.
    Import all models here so SQLAlchemy knows about them.
    """
    from app.models.channel import Channel                 # noqa
    from app.models.event import Event                     # noqa
    from app.models.snapshot import Snapshot               # noqa
    from app.models.webhook_request import WebhookRequest  # noqa

    target = bind if bind is not None else engine
    if target is None:
        logger.warning("DATABASE_URL not configured — skipping table creation")
        return
    Base.metadata.create_all(bind=target)
