"""
Database error handling for engine transactions.

Each session-mutating operation runs inside :func:`handle_db_error` so that
any failure rolls back the whole unit (answer + counter, violation + counter
+ terminal transition, session + invitation). Infrastructure failures are
reported as ``INTERNAL_ERROR`` and never retried here; retrying a write is
the caller's decision.

Usage:
    from exam_engine.core.db_error_handling import handle_db_error

    with handle_db_error(db, "submit answer"):
        db.add(answer)
        ...
        db.commit()
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from exam_engine.core.error_responses import ErrorCode, ExamSessionError


logger = logging.getLogger(__name__)


@contextmanager
def handle_db_error(
    db: Session,
    operation_name: str,
    *,
    log_level: int = logging.ERROR,
) -> Generator[None, None, None]:
    """Roll back on any failure inside the block.

    Args:
        db: The SQLAlchemy session to roll back on error.
        operation_name: Human-readable name of the operation for logging
            (e.g. "start exam session", "record violation").
        log_level: Logging level for infrastructure errors.

    Yields:
        None - the context manager is used for its side effects only.

    Raises:
        ExamSessionError: Re-raised unchanged after rollback when the block
            refused the request itself; raised with INTERNAL_ERROR when the
            database failed.
    """
    try:
        yield
    except ExamSessionError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.log(
            log_level,
            f"Database error during {operation_name}: {e}",
            exc_info=True,
        )
        raise ExamSessionError(ErrorCode.INTERNAL_ERROR) from e
