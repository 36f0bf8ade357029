# Overview: Transaction boundaries, row locks and retry for engine operations.

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import (
    AllocationExhaustedError,
    CommerceError,
    DocumentNumberConflict,
    StorageError,
)


# Concurrency failures where re-running the whole transaction is safe.
TRANSIENT_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


Step = Callable[[dict], Any]


@dataclass
class TransactionScript:
    """
    Ordered list of named steps executed inside ONE rollback boundary.

    RULES:
    - Steps share a `state` dict (inputs in, results out).
    - Any exception in any step rolls back everything the script wrote,
      including domain errors (insufficient stock, not found, over-return).
    - The commit happens once, after the last step.
    - Unexpected SQLAlchemy failures surface as StorageError.
    """
    name: str
    steps: list[tuple[str, Step]] = field(default_factory=list)

    def step(self, name: str, func: Step) -> "TransactionScript":
        self.steps.append((name, func))
        return self

    def run(self, state: dict) -> dict:
        current = None
        try:
            for current, func in self.steps:
                current_app.logger.debug("%s: step %s", self.name, current)
                func(state)
            db.session.commit()
        except (CommerceError, DocumentNumberConflict, *TRANSIENT_ERRORS):
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("%s failed at step %s", self.name, current)
            raise StorageError(f"{self.name} failed: storage error") from exc
        except Exception:
            db.session.rollback()
            raise
        return state


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    number_attempts: int | None = None,
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) with exponential backoff, and on
    DocumentNumberConflict (another writer committed the same document
    number first) without backoff. Each retry re-runs the whole operation,
    so it always starts from committed state.
    """
    if number_attempts is None:
        number_attempts = current_app.config.get("DOCUMENT_INSERT_ATTEMPTS", 5)

    transient_failures = 0
    number_conflicts = 0
    while True:
        try:
            return func()
        except TRANSIENT_ERRORS as exc:
            db.session.rollback()
            transient_failures += 1
            if transient_failures >= attempts:
                raise StorageError("Database is busy, please retry") from exc
            time.sleep(backoff_base * (2 ** (transient_failures - 1)))
        except DocumentNumberConflict as exc:
            db.session.rollback()
            number_conflicts += 1
            current_app.logger.warning(
                "Document number collision on insert (%s), attempt %d", exc.document_number, number_conflicts
            )
            if number_conflicts >= number_attempts:
                raise AllocationExhaustedError(
                    "Could not allocate a unique document number",
                    details={"attempts": number_conflicts},
                ) from exc


def run_script(script: TransactionScript, make_state: Callable[[], dict], **retry_kwargs) -> dict:
    """Run a script with a fresh state per attempt."""
    return run_with_retry(lambda: script.run(make_state()), **retry_kwargs)
