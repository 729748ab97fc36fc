# Overview: Retry policy for compare-and-set stock writes that lose a race.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

# SQLite "database is locked" and a version mismatch on products.version_id
RETRYABLE = (OperationalError, StaleDataError)


def retry_stock_write(func, *, product_code: str, reference: str, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run one product's read-compare-write, retrying when another terminal
    wrote the same product first.

    The session is rolled back before each retry so ``func`` re-reads the
    current quantity and version. After ``attempts`` conflicts the last
    error propagates.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE as exc:
            db.session.rollback()
            if attempt == attempts:
                logger.error(
                    "Stock write for %s (%s) still conflicting after %d attempts: %s",
                    product_code, reference, attempts, exc,
                )
                raise
            logger.warning(
                "Stock for %s changed under %s, re-reading (attempt %d/%d)",
                product_code, reference, attempt, attempts,
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))
