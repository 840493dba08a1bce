"""
Proctoring violation tracker.

Violations are reported by the client (tab switches, copy attempts and so
on) and appended to an immutable log. The violation row, the counter
increment and a possible forced completion share one transaction. Once the
count reaches ``EXAM_VIOLATION_LIMIT`` the session is completed with
whatever answers it has, through the same status compare-and-swap a manual
completion uses, so only one of them can win.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from exam_engine.core import timing
from exam_engine.core.config import settings
from exam_engine.core.db_error_handling import handle_db_error
from exam_engine.core.session_lifecycle import (
    expire_if_elapsed,
    finalize_session,
    get_owned_session,
)
from exam_engine.models import ExamSession, ExamViolation, SessionStatus, User
from exam_engine.schemas.exam_sessions import (
    RecordViolationRequest,
    ViolationResponse,
)

logger = logging.getLogger(__name__)


def _not_recorded(session: ExamSession) -> ViolationResponse:
    return ViolationResponse(
        recorded=False,
        violation_count=session.violation_count,
        violation_limit=settings.EXAM_VIOLATION_LIMIT,
        session_status=session.status,
    )


def record_violation(
    db: Session,
    user: User,
    session_id: int,
    request: RecordViolationRequest,
    now: Optional[datetime] = None,
) -> ViolationResponse:
    """
    Log a proctoring event and enforce the violation limit.

    Reporting against a session that is no longer active (including one
    found past its deadline) is not an error: nothing is written and the
    current count and status are returned with ``recorded`` false.

    Args:
        db: Database session
        user: Authenticated user
        session_id: Session the event belongs to
        request: Violation type and client metadata
        now: Event time (defaults to ``utc_now()``)

    Returns:
        ViolationResponse with the post-event count and session status

    Raises:
        ExamSessionError: SESSION_NOT_FOUND
    """
    now = now or timing.utc_now()
    session = get_owned_session(db, session_id, user)

    if session.status != SessionStatus.ACTIVE or expire_if_elapsed(db, session, now):
        return _not_recorded(session)

    limit = settings.EXAM_VIOLATION_LIMIT
    auto_completed = False

    with handle_db_error(db, "record violation"):
        counted = db.execute(
            update(ExamSession)
            .where(
                ExamSession.id == session.id,
                ExamSession.status == SessionStatus.ACTIVE,
            )
            .values(violation_count=ExamSession.violation_count + 1)
            .execution_options(synchronize_session=False)
        )
        if counted.rowcount != 1:
            # Completed or abandoned by a concurrent request
            db.rollback()
            db.refresh(session)
            return _not_recorded(session)

        db.add(
            ExamViolation(
                session_id=session.id,
                type=request.type,
                timestamp=now,
                violation_metadata=request.metadata,
            )
        )
        db.flush()

        db.refresh(session)
        if session.violation_count >= limit:
            auto_completed = finalize_session(db, session, now) is not None

        db.commit()
    db.refresh(session)

    if auto_completed:
        logger.warning(
            f"Session {session.id} auto-completed after "
            f"{session.violation_count} violations (limit {limit})",
            extra={"session_id": session.id, "user_id": user.id},
        )
    else:
        logger.info(
            f"Violation {request.type.value} recorded for session {session.id} "
            f"({session.violation_count}/{limit})",
            extra={"session_id": session.id, "user_id": user.id},
        )

    return ViolationResponse(
        recorded=True,
        violation_count=session.violation_count,
        violation_limit=limit,
        session_status=session.status,
        auto_completed=auto_completed,
    )
