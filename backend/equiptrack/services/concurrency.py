# Overview: Row locking and retry helpers for writes racing on the same rows.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the rows of `query`.

    NOTE: SQLite ignores FOR UPDATE; there the version_id check on Extension
    is what serializes concurrent attach approvals.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of work, retrying on lock contention or a stale version.

    The session is rolled back before every retry so `func` always starts
    from fresh rows (and re-runs its own validation).
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying after %s (attempt %s of %s)", exc.__class__.__name__, attempt + 1, attempts
            )
            time.sleep(backoff_base * (2 ** attempt))


def commit_with_retry(*, attempts: int = 3, backoff_base: float = 0.1):
    """Commit the current session with retry handling."""
    return run_with_retry(db.session.commit, attempts=attempts, backoff_base=backoff_base)
