"""
Exam session state machine.

    active -> completed | abandoned | expired

All three targets are terminal. Every terminal transition is a single
``UPDATE ... WHERE status = 'active'`` whose row count decides the winner,
so a manual completion racing a violation-triggered one (or an expiry) can
never both succeed and a terminal session can never be reopened.

Expiry is lazy. A timed session stays ``active`` in storage past its
deadline until a request touches it; that request moves it to ``expired``
and is refused with SESSION_EXPIRED. Anything reporting on sessions must
therefore recompute expiry rather than trust ``status`` alone.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exam_engine.core import timing
from exam_engine.core.db_error_handling import handle_db_error
from exam_engine.core.eligibility import (
    CONFIGURABLE_CATEGORIES,
    AccessDecision,
    check_access,
)
from exam_engine.core.error_responses import (
    ErrorCode,
    ErrorMessages,
    raise_engine_error,
)
from exam_engine.core.question_store import exam_question_ids, get_question_or_error
from exam_engine.core.randomizer import select_subset, shuffle
from exam_engine.core.scoring import SessionScore, tally_session
from exam_engine.models import (
    ExamAnswer,
    ExamCategory,
    ExamInvitation,
    ExamSession,
    SessionStatus,
    User,
)
from exam_engine.schemas.exam_sessions import (
    AbandonResponse,
    CompleteResponse,
    OptionView,
    QuestionView,
    SessionConfig,
    SessionStateResponse,
    StartSessionResponse,
    TimeSyncResponse,
)

logger = logging.getLogger(__name__)

# Error reported when an operation needs an active session but finds a terminal one
_TERMINAL_STATUS_ERRORS = {
    SessionStatus.COMPLETED: ErrorCode.SESSION_COMPLETED,
    SessionStatus.EXPIRED: ErrorCode.SESSION_EXPIRED,
    SessionStatus.ABANDONED: ErrorCode.SESSION_NOT_ACTIVE,
}


@dataclass(frozen=True)
class SessionPlan:
    """Settings a new session is created with."""

    num_questions: Optional[int]  # None means every exam question
    time_limit: Optional[int]
    shuffle_questions: bool
    shuffle_options: bool


# =============================================================================
# Shared helpers
# =============================================================================


def get_owned_session(db: Session, session_id: int, user: User) -> ExamSession:
    """
    Fetch a session owned by ``user``.

    A session belonging to someone else is reported as not found so its
    existence is not revealed.

    Raises:
        ExamSessionError: SESSION_NOT_FOUND
    """
    session = db.query(ExamSession).filter(ExamSession.id == session_id).first()
    if session is None or session.user_id != user.id:
        raise_engine_error(ErrorCode.SESSION_NOT_FOUND)
    return session


def transition_session(
    db: Session,
    session_id: int,
    new_status: SessionStatus,
    *,
    score: Optional[float] = None,
    completed_at: Optional[datetime] = None,
) -> bool:
    """
    Move an active session to a terminal status.

    Does not commit. The caller owns the transaction.

    Args:
        db: Database session
        session_id: Session to transition
        new_status: Terminal status to set
        score: Final score (only for COMPLETED)
        completed_at: Completion timestamp (only for COMPLETED)

    Returns:
        True if this call performed the transition, False if the session was
        no longer active
    """
    values = {"status": new_status}
    if new_status == SessionStatus.COMPLETED:
        values["score"] = score
        values["completed_at"] = completed_at or timing.utc_now()

    result = db.execute(
        update(ExamSession)
        .where(
            ExamSession.id == session_id,
            ExamSession.status == SessionStatus.ACTIVE,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def finalize_session(
    db: Session, session: ExamSession, now: Optional[datetime] = None
) -> Optional[SessionScore]:
    """
    Score a session from its stored answers and complete it.

    Does not commit. Shared by manual completion and violation-triggered
    completion.

    Returns:
        The score written, or None if another writer already moved the
        session out of ``active``
    """
    result = tally_session(db, session)
    won = transition_session(
        db,
        session.id,
        SessionStatus.COMPLETED,
        score=result.score,
        completed_at=now,
    )
    return result if won else None


def expire_if_elapsed(
    db: Session, session: ExamSession, now: Optional[datetime] = None
) -> bool:
    """
    Reconcile a timed-out session to ``expired``.

    Commits the transition on its own. Returns True when the session is
    (now) expired.
    """
    if session.status != SessionStatus.ACTIVE:
        return session.status == SessionStatus.EXPIRED
    if not timing.is_expired(session.started_at, session.time_limit, now):
        return False

    with handle_db_error(db, "expire exam session"):
        if transition_session(db, session.id, SessionStatus.EXPIRED):
            logger.info(
                f"Session {session.id} expired (time limit {session.time_limit} min)",
                extra={"session_id": session.id, "user_id": session.user_id},
            )
        db.commit()
    db.refresh(session)
    return session.status == SessionStatus.EXPIRED


def ensure_active(
    db: Session, session: ExamSession, now: Optional[datetime] = None
) -> None:
    """
    Refuse the request unless the session is active and within its time.

    A session found past its deadline is transitioned to ``expired`` first.

    Raises:
        ExamSessionError: SESSION_COMPLETED, SESSION_EXPIRED or
            SESSION_NOT_ACTIVE
    """
    if session.status == SessionStatus.ACTIVE and expire_if_elapsed(db, session, now):
        raise_engine_error(ErrorCode.SESSION_EXPIRED, status=session.status.value)
    if session.status != SessionStatus.ACTIVE:
        raise_engine_error(
            _TERMINAL_STATUS_ERRORS[session.status],
            status=session.status.value,
        )


def answered_question_ids(db: Session, session_id: int) -> List[int]:
    rows = (
        db.query(ExamAnswer.question_id)
        .filter(ExamAnswer.session_id == session_id)
        .all()
    )
    return [row.question_id for row in rows]


def _state_of(
    db: Session, session: ExamSession, now: Optional[datetime] = None
) -> SessionStateResponse:
    return SessionStateResponse(
        session_id=session.id,
        exam_id=session.exam_id,
        category=session.category,
        status=session.status,
        started_at=timing.ensure_timezone_aware(session.started_at),
        server_end_time=timing.deadline(session.started_at, session.time_limit),
        time_limit=session.time_limit,
        remaining_time=timing.remaining_seconds(
            session.started_at, session.time_limit, now
        ),
        total_questions=session.total_questions,
        answered_questions=session.answered_questions,
        violation_count=session.violation_count,
        question_order=list(session.question_order),
        answered_question_ids=answered_question_ids(db, session.id),
    )


# =============================================================================
# Start
# =============================================================================


def resolve_session_plan(
    decision: AccessDecision, config: Optional[SessionConfig]
) -> SessionPlan:
    """
    Work out question count, time limit and shuffling for a new session.

    Practice and test exams take them from the candidate's configuration,
    which is mandatory; a test exam must also carry a time limit. Every
    other category uses the exam's fixed settings and ignores any config.

    Raises:
        ExamSessionError: CONFIG_REQUIRED or TIME_LIMIT_REQUIRED
    """
    exam = decision.exam
    if decision.category in CONFIGURABLE_CATEGORIES:
        if config is None:
            raise_engine_error(ErrorCode.CONFIG_REQUIRED)
        if decision.category == ExamCategory.TEST and config.time_limit is None:
            raise_engine_error(ErrorCode.TIME_LIMIT_REQUIRED)
        return SessionPlan(
            num_questions=config.num_questions,
            time_limit=config.time_limit,
            shuffle_questions=config.shuffle_questions,
            shuffle_options=config.shuffle_options,
        )

    if config is not None:
        logger.debug(
            f"Ignoring session config for {decision.category.value} exam {exam.id}"
        )
    return SessionPlan(
        num_questions=None,
        time_limit=exam.duration,
        shuffle_questions=bool(exam.shuffle_questions),
        shuffle_options=bool(exam.randomize_options),
    )


def _reap_or_reject_active_session(
    db: Session, user_id: int, now: datetime
) -> None:
    """Expire the user's timed-out active session, or refuse if it is live."""
    active = (
        db.query(ExamSession)
        .filter(
            ExamSession.user_id == user_id,
            ExamSession.status == SessionStatus.ACTIVE,
        )
        .first()
    )
    if active is None:
        return
    if expire_if_elapsed(db, active, now):
        return
    raise_engine_error(
        ErrorCode.CONCURRENT_SESSION,
        session_id=active.id,
        exam_id=active.exam_id,
    )


def start_session(
    db: Session,
    user: User,
    exam_id: int,
    invitation_token: Optional[str] = None,
    config: Optional[SessionConfig] = None,
    now: Optional[datetime] = None,
) -> StartSessionResponse:
    """
    Start a new attempt.

    Eligibility is re-checked here rather than trusted from an earlier
    check. All validation happens before anything is written. The new
    session and the invitation consumption commit together.

    Args:
        db: Database session
        user: Authenticated user
        exam_id: Exam to attempt
        invitation_token: Token for invitation-gated exams
        config: Candidate configuration for practice/test exams
        now: Start time (defaults to ``utc_now()``)

    Returns:
        StartSessionResponse with the authoritative deadline

    Raises:
        ExamSessionError: Any eligibility, validation or conflict code
    """
    now = now or timing.utc_now()

    decision = check_access(db, user, exam_id, invitation_token, now)
    plan = resolve_session_plan(decision, config)
    all_question_ids = exam_question_ids(db, exam_id)
    if not all_question_ids:
        raise_engine_error(ErrorCode.EXAM_HAS_NO_QUESTIONS)

    _reap_or_reject_active_session(db, user.id, now)

    question_order = select_subset(
        all_question_ids, plan.num_questions or len(all_question_ids)
    )
    if plan.shuffle_questions:
        question_order = shuffle(question_order)

    with handle_db_error(db, "start exam session"):
        session = ExamSession(
            user_id=user.id,
            exam_id=exam_id,
            category=decision.category,
            started_at=now,
            time_limit=plan.time_limit,
            total_questions=len(question_order),
            answered_questions=0,
            violation_count=0,
            question_order=question_order,
            shuffle_questions=plan.shuffle_questions,
            shuffle_options=plan.shuffle_options,
            status=SessionStatus.ACTIVE,
        )
        db.add(session)
        try:
            db.flush()
        except IntegrityError:
            # Partial unique index on active sessions caught a racing start
            db.rollback()
            logger.warning(
                f"Race condition detected: user {user.id} attempted to start "
                f"concurrent exam sessions. Database constraint prevented duplicate."
            )
            raise_engine_error(ErrorCode.CONCURRENT_SESSION)

        if decision.invitation is not None:
            consumed = db.execute(
                update(ExamInvitation)
                .where(
                    ExamInvitation.id == decision.invitation.id,
                    ExamInvitation.used_at.is_(None),
                )
                .values(used_at=now)
                .execution_options(synchronize_session=False)
            )
            if consumed.rowcount != 1:
                raise_engine_error(ErrorCode.INVITATION_USED)

        db.commit()
        db.refresh(session)

    logger.info(
        f"User {user.id} started session {session.id} for exam {exam_id} "
        f"({session.total_questions} questions, time limit {session.time_limit})",
        extra={"session_id": session.id, "exam_id": exam_id, "user_id": user.id},
    )
    return StartSessionResponse(
        session_id=session.id,
        exam_id=exam_id,
        started_at=timing.ensure_timezone_aware(session.started_at),
        server_end_time=timing.deadline(session.started_at, session.time_limit),
        time_limit=session.time_limit,
        total_questions=session.total_questions,
        shuffle_questions=session.shuffle_questions,
        shuffle_options=session.shuffle_options,
    )


# =============================================================================
# Read paths
# =============================================================================


def resume_session(
    db: Session, user: User, session_id: int, now: Optional[datetime] = None
) -> SessionStateResponse:
    """Public-safe state of an active session with recomputed remaining time."""
    session = get_owned_session(db, session_id, user)
    ensure_active(db, session, now)
    return _state_of(db, session, now)


def get_active_session(
    db: Session,
    user: User,
    exam_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[SessionStateResponse]:
    """
    The user's live session, if any.

    A session found past its deadline is expired on the way and not
    returned. With ``exam_id``, only a session for that exam is returned.
    """
    session = (
        db.query(ExamSession)
        .filter(
            ExamSession.user_id == user.id,
            ExamSession.status == SessionStatus.ACTIVE,
        )
        .first()
    )
    if session is None or expire_if_elapsed(db, session, now):
        return None
    if exam_id is not None and session.exam_id != exam_id:
        return None
    return _state_of(db, session, now)


def get_question(
    db: Session,
    user: User,
    session_id: int,
    index: int,
    now: Optional[datetime] = None,
) -> QuestionView:
    """
    Serve the question at ``index`` of the session's fixed order.

    Correctness flags are never included. When the session shuffles
    options, each call draws a fresh permutation.

    Raises:
        ExamSessionError: SESSION_NOT_FOUND, SESSION_EXPIRED,
            SESSION_NOT_ACTIVE, INVALID_QUESTION_INDEX or QUESTION_NOT_FOUND
    """
    session = get_owned_session(db, session_id, user)
    ensure_active(db, session, now)

    if not 0 <= index < session.total_questions:
        raise_engine_error(
            ErrorCode.INVALID_QUESTION_INDEX,
            ErrorMessages.question_index_out_of_range(index, session.total_questions),
        )

    question = get_question_or_error(db, session.question_order[index])
    options = [OptionView(id=o.id, text=o.text) for o in question.options]
    if session.shuffle_options:
        options = shuffle(options)

    answered = (
        db.query(ExamAnswer.id)
        .filter(
            ExamAnswer.session_id == session.id,
            ExamAnswer.question_id == question.id,
        )
        .first()
        is not None
    )

    return QuestionView(
        index=index,
        question_id=question.id,
        type=question.type,
        text=question.text,
        point_value=question.point_value,
        options=options,
        answered=answered,
        total_questions=session.total_questions,
        remaining_time=timing.remaining_seconds(
            session.started_at, session.time_limit, now
        ),
    )


def sync_server_time(
    db: Session, user: User, session_id: int, now: Optional[datetime] = None
) -> TimeSyncResponse:
    """Server clock and remaining time so the client can correct its countdown."""
    now = now or timing.utc_now()
    session = get_owned_session(db, session_id, user)
    ensure_active(db, session, now)
    return TimeSyncResponse(
        server_time=now,
        remaining_time=timing.remaining_seconds(
            session.started_at, session.time_limit, now
        ),
        server_end_time=timing.deadline(session.started_at, session.time_limit),
    )


# =============================================================================
# Terminal transitions
# =============================================================================


def abandon_session(
    db: Session, user: User, session_id: int, now: Optional[datetime] = None
) -> AbandonResponse:
    """
    Give up an active session. No score is computed.

    Raises:
        ExamSessionError: SESSION_NOT_FOUND, SESSION_EXPIRED,
            SESSION_COMPLETED or SESSION_NOT_ACTIVE
    """
    session = get_owned_session(db, session_id, user)
    ensure_active(db, session, now)

    with handle_db_error(db, "abandon exam session"):
        won = transition_session(db, session.id, SessionStatus.ABANDONED)
        db.commit()
    db.refresh(session)

    if not won:
        ensure_active(db, session, now)

    logger.info(
        f"Session {session.id} abandoned by user {user.id} "
        f"after {session.answered_questions} answers",
        extra={"session_id": session.id, "user_id": user.id},
    )
    return AbandonResponse(
        session_id=session.id,
        status=session.status,
        answered_questions=session.answered_questions,
    )


def _completed_response(
    db: Session, session: ExamSession, already_completed: bool
) -> CompleteResponse:
    result = tally_session(db, session)
    return CompleteResponse(
        session_id=session.id,
        status=session.status,
        score=session.score if session.score is not None else result.score,
        correct_answers=result.correct_answers,
        total_questions=session.total_questions,
        completed_at=timing.ensure_timezone_aware(session.completed_at),
        already_completed=already_completed,
    )


def complete_session(
    db: Session, user: User, session_id: int, now: Optional[datetime] = None
) -> CompleteResponse:
    """
    Finish an attempt and write its score.

    Scores are write-once. Completing an already-completed session returns
    the stored result with ``already_completed`` set instead of recomputing.
    An active session past its deadline can still be completed: no answer is
    accepted after the deadline, so the score only covers answers given in
    time.

    Raises:
        ExamSessionError: SESSION_NOT_FOUND, or SESSION_NOT_ACTIVE for
            abandoned and expired sessions
    """
    now = now or timing.utc_now()
    session = get_owned_session(db, session_id, user)

    if session.status == SessionStatus.ACTIVE:
        with handle_db_error(db, "complete exam session"):
            result = finalize_session(db, session, now)
            db.commit()
        db.refresh(session)
        if result is not None:
            logger.info(
                f"Session {session.id} completed by user {user.id}: "
                f"{result.correct_answers}/{result.total_questions} "
                f"({result.score:.1f}%)",
                extra={"session_id": session.id, "user_id": user.id},
            )
            return _completed_response(db, session, already_completed=False)

    if session.status == SessionStatus.COMPLETED:
        return _completed_response(db, session, already_completed=True)

    raise_engine_error(
        ErrorCode.SESSION_NOT_ACTIVE,
        ErrorMessages.session_in_status(session.status.value),
        status=session.status.value,
    )
