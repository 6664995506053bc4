# Overview: Retry helper shared by the write paths.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05, max_backoff: float = 1.0):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Business errors raised by `func`
    propagate immediately after the session is rolled back.
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
            current_app.logger.warning(
                "Concurrent write conflict (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            time.sleep(min(backoff_base * (2 ** attempt), max_backoff))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
