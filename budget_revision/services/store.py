"""
Transaction boundary for service-layer writes.

Usage:
    with unit_of_work():
        db.session.add(record)
        ...

- commits on success
- rolls back on any error
- SQLAlchemyError is re-raised as StoreError (safe for the caller to retry manually)
"""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from ..errors import StoreError
from ..extensions import db
from ..logging_config import get_logger

logger = get_logger(__name__)


@contextmanager
def unit_of_work():
    try:
        yield db.session
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Store write failed: %s", exc)
        raise StoreError(f"Store write failed: {exc.__class__.__name__}: {exc}") from exc
    except Exception:
        db.session.rollback()
        raise
