"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session-handling contract for every SQL-backed
    collaborator.  Services use ``session.flush()`` -- never
    ``session.commit()``.  Also translates SQLAlchemy driver errors into
    the kernel's typed infrastructure exceptions so the recovery strategy
    table can dispatch on ``code``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back.  The caller (``session_scope`` or a test
    fixture) owns commit/rollback.

Failure modes:
    - DatabaseError, ConnectionTimeoutError, DeadlockDetectedError raised
      from ``translate_db_errors`` in place of the SQLAlchemy exception.
"""

from __future__ import annotations

from abc import ABC
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session

from procurement_kernel.exceptions import (
    ConnectionTimeoutError,
    DatabaseError,
    DeadlockDetectedError,
)


def is_deadlock(error: BaseException) -> bool:
    return "deadlock" in str(error).lower()


@contextmanager
def translate_db_errors(operation: str) -> Generator[None, None, None]:
    """Re-raise SQLAlchemy errors as typed kernel infrastructure errors."""
    try:
        yield
    except sa_exc.TimeoutError as e:
        raise ConnectionTimeoutError(operation) from e
    except sa_exc.OperationalError as e:
        if is_deadlock(e):
            raise DeadlockDetectedError(operation) from e
        raise DatabaseError(operation, str(e.orig)) from e
    except sa_exc.DBAPIError as e:
        raise DatabaseError(operation, str(e.orig)) from e


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT manage transaction lifecycle.
    """

    def __init__(self, session: Session):
        self.session = session
