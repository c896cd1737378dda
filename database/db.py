"""
Engine and session wiring for BloomFund.

DATABASE_URL must be set before this module is imported. SQLite URLs are
accepted for local runs and tests; everything else gets a pre-pinged pool
with a bounded checkout wait.
"""

import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator
import logging

from bloomfund.errors import BloomFundError
from database.models import Base

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable not set!")


def make_engine(url: str = DATABASE_URL, **kwargs):
    """
    Build an engine for ``url``.

    Server databases get pool_pre_ping (drop dead connections before use)
    and pool_timeout from DB_POOL_TIMEOUT, so a saturated pool surfaces as
    StoreUnavailable instead of a hung request.
    """
    if url.startswith("sqlite"):
        return create_engine(url, **kwargs)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", 10)),
        echo=False,
        **kwargs
    )


engine = make_engine()

# expire_on_commit=False: the store commits mid-workflow and callers keep
# using the rows afterwards
SessionLocal = sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False
)


def get_db() -> Generator[Session, None, None]:
    """
    Per-request session for FastAPI's Depends.

    Commits whatever is left pending when the route returns and rolls back
    when it raises.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except BloomFundError:
        # Already logged at the right level where it was raised
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Request failed, session rolled back: {e}")
        raise
    finally:
        db.close()


def create_tables(bind=None):
    """Create every table from the models (local runs and tests)."""
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created")
