# Overview: Row locking, bounded retry and commit helpers shared by every write path.

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConcurrencyError, LedgerError, PersistenceError

RETRYABLE_ERRORS = (OperationalError, StaleDataError, ConcurrencyError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the database-wide
    writer lock serializes the transaction instead.
    """
    return query.with_for_update()


def _default_attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("RETRY_ATTEMPTS", 3))
    return 3


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a whole DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks, busy database), StaleDataError
    (optimistic version conflicts) and ConcurrencyError (lost insert race).
    The session is rolled back before every retry and before any error
    leaves this function. Domain errors propagate unchanged; other
    SQLAlchemy errors are wrapped in PersistenceError. Anything else is
    re-raised after the rollback.
    """
    attempts = attempts or _default_attempts()
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, ConcurrencyError):
                    raise
                raise ConcurrencyError(
                    "Concurrent update conflict, please retry",
                    details={"attempts": attempts, "cause": type(exc).__name__},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except LedgerError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(
                "Database error, transaction rolled back",
                details={"cause": type(exc).__name__},
            ) from exc
        except Exception:
            db.session.rollback()
            raise
