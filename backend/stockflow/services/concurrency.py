# Overview: Transaction and retry helpers shared by every write path.

from __future__ import annotations

import logging
import time

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Product

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    populate_existing() makes the locked read overwrite any stale copy the
    session already holds.
    """
    return query.with_for_update().populate_existing()


def begin_write() -> None:
    """
    Open the write transaction up front.

    SQLite: BEGIN IMMEDIATE takes the database write lock now, so concurrent
    writers queue here (up to the driver's busy timeout) instead of failing
    later on lock upgrade. No-op if a transaction is already open or on
    other dialects, where conditional UPDATEs guard each counter and
    lock_product_row serializes writers that share a product aggregate.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if getattr(raw, "in_transaction", False):
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates unchanged.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after concurrency failure (attempt %s): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc


def lock_product_row(product_id: int) -> None:
    """
    SELECT ... FOR UPDATE on the product row.

    Taken before touching a variant so that writers on sibling variants
    queue on the parent; the aggregate recompute that follows then reads
    every committed variant change. SQLite omits FOR UPDATE and relies on
    begin_write instead.
    """
    db.session.execute(select(Product.id).where(Product.id == product_id).with_for_update())
