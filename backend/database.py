"""
Database engine and session management.

`get_db` is the FastAPI dependency used by every route; tests override it with
an in-memory SQLite session.
"""

import logging
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from errors import TransactionError
from settings import DATABASE_URL

logger = logging.getLogger(__name__)

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for the duration of one request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session, action: str) -> Iterator[Session]:
    """
    Run a block of writes as one unit: commit on success, roll back on any error.

    Persistence failures are re-raised as TransactionError; domain errors raised
    inside the block propagate unchanged after the rollback.

    Example:
        >>> with transaction(db, "project creation"):
        ...     db.add(project)
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Transaction failed during {action}, rolled back: {e}")
        raise TransactionError() from e
    except Exception:
        db.rollback()
        raise
