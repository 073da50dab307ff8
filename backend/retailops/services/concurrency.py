# Overview: Retry helpers for single-statement database writes under contention.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError

from ..extensions import db

logger = logging.getLogger(__name__)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on lock contention.

    Retries on OperationalError ("database is locked", deadlock victims).
    Only wrap operations whose business check is re-evaluated by the
    database on every attempt, such as a conditional UPDATE; never wrap a
    read-then-write sequence whose read could be stale.
    """
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            delay = backoff_base * (2 ** attempt)
            logger.debug("Retrying after lock contention (attempt %d, sleeping %.2fs)", attempt + 1, delay)
            time.sleep(delay)
