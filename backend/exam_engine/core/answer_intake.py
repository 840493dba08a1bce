"""
Answer intake for active exam sessions.

Each answer is graded when written, against the option flagged correct at
that moment, and is never modified afterwards. The answer row and the
session's ``answered_questions`` increment share one transaction so the
counter always equals the number of stored answers.

The unique constraint on ``(session_id, question_id)`` is the real
duplicate guard. The lookup before insert only gives the common case a
clean error without touching the constraint.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exam_engine.core import timing
from exam_engine.core.db_error_handling import handle_db_error
from exam_engine.core.error_responses import ErrorCode, raise_engine_error
from exam_engine.core.question_store import QuestionRecord, get_question_or_error
from exam_engine.core.session_lifecycle import ensure_active, get_owned_session
from exam_engine.models import (
    ExamAnswer,
    ExamCategory,
    ExamSession,
    QuestionType,
    SessionStatus,
    User,
)
from exam_engine.schemas.exam_sessions import (
    AnswerFeedback,
    SubmitAnswerRequest,
    SubmitAnswerResponse,
)

logger = logging.getLogger(__name__)

Grader = Callable[[QuestionRecord, SubmitAnswerRequest], Optional[bool]]


def _grade_choice(
    question: QuestionRecord, request: SubmitAnswerRequest
) -> Optional[bool]:
    if request.selected_option_id is None:
        return False
    if question.option(request.selected_option_id) is None:
        raise_engine_error(
            ErrorCode.INVALID_OPTION,
            question_id=question.id,
            option_id=request.selected_option_id,
        )
    return request.selected_option_id == question.correct_option_id


def _grade_text(
    question: QuestionRecord, request: SubmitAnswerRequest
) -> Optional[bool]:
    # Free text is reviewed outside the engine
    return None


_GRADERS: Dict[QuestionType, Grader] = {
    QuestionType.MULTIPLE_CHOICE: _grade_choice,
    QuestionType.TRUE_FALSE: _grade_choice,
    QuestionType.TEXT: _grade_text,
}


def grade_answer(
    question: QuestionRecord, request: SubmitAnswerRequest
) -> Optional[bool]:
    """
    Grade a submission against the question's current answer key.

    Returns:
        True/False for choice questions, None for ungraded types

    Raises:
        ExamSessionError: INVALID_OPTION when the selected option belongs to
            another question
    """
    return _GRADERS[question.type](question, request)


def _find_existing_answer(
    db: Session, session_id: int, question_id: int
) -> Optional[ExamAnswer]:
    return (
        db.query(ExamAnswer)
        .filter(
            ExamAnswer.session_id == session_id,
            ExamAnswer.question_id == question_id,
        )
        .first()
    )


def submit_answer(
    db: Session,
    user: User,
    session_id: int,
    request: SubmitAnswerRequest,
    now: Optional[datetime] = None,
) -> SubmitAnswerResponse:
    """
    Store and grade one answer.

    Args:
        db: Database session
        user: Authenticated user
        session_id: Session being answered
        request: Validated and sanitized submission
        now: Submission time (defaults to ``utc_now()``)

    Returns:
        SubmitAnswerResponse with the updated progress, and feedback for
        practice sessions

    Raises:
        ExamSessionError: SESSION_NOT_FOUND, SESSION_EXPIRED,
            SESSION_NOT_ACTIVE, SESSION_COMPLETED, QUESTION_NOT_IN_SESSION,
            QUESTION_NOT_FOUND, INVALID_OPTION or ALREADY_ANSWERED
    """
    now = now or timing.utc_now()
    session = get_owned_session(db, session_id, user)
    ensure_active(db, session, now)

    if request.question_id not in session.question_order:
        raise_engine_error(
            ErrorCode.QUESTION_NOT_IN_SESSION, question_id=request.question_id
        )

    if _find_existing_answer(db, session.id, request.question_id) is not None:
        raise_engine_error(
            ErrorCode.ALREADY_ANSWERED, question_id=request.question_id
        )

    question = get_question_or_error(db, request.question_id)
    is_correct = grade_answer(question, request)

    with handle_db_error(db, "submit answer"):
        db.add(
            ExamAnswer(
                session_id=session.id,
                question_id=question.id,
                selected_option_id=(
                    request.selected_option_id
                    if question.type != QuestionType.TEXT
                    else None
                ),
                text_answer=(
                    request.text_answer if question.type == QuestionType.TEXT else None
                ),
                is_correct=is_correct,
                time_spent=request.time_spent,
                answered_at=now,
            )
        )
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.warning(
                f"Duplicate answer for question {question.id} in session "
                f"{session.id} rejected by database constraint"
            )
            raise_engine_error(ErrorCode.ALREADY_ANSWERED, question_id=question.id)

        counted = db.execute(
            update(ExamSession)
            .where(
                ExamSession.id == session.id,
                ExamSession.status == SessionStatus.ACTIVE,
            )
            .values(answered_questions=ExamSession.answered_questions + 1)
            .execution_options(synchronize_session=False)
        )
        if counted.rowcount != 1:
            # Session left ``active`` between the check and the write
            db.rollback()
            db.refresh(session)
            ensure_active(db, session, now)
            raise_engine_error(ErrorCode.SESSION_NOT_ACTIVE)

        db.commit()
    db.refresh(session)

    logger.debug(
        f"Session {session.id} answered question {question.id} "
        f"({session.answered_questions}/{session.total_questions})"
    )

    feedback = None
    if session.category == ExamCategory.PRACTICE and is_correct is not None:
        feedback = AnswerFeedback(
            is_correct=is_correct,
            correct_option_id=question.correct_option_id,
            explanation=question.explanation,
        )

    return SubmitAnswerResponse(
        question_id=question.id,
        answered_questions=session.answered_questions,
        total_questions=session.total_questions,
        feedback=feedback,
    )
