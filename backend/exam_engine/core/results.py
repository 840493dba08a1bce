"""
Results compilation for completed sessions.

Results are a pure read of stored data. The score shown is the one written
at completion; correct answers are recounted from the answer rows and any
disagreement between the two is logged rather than corrected, since scores
are write-once.
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from exam_engine.core import timing
from exam_engine.core.error_responses import ErrorCode, raise_engine_error
from exam_engine.core.graceful_failure import graceful_failure
from exam_engine.core.question_store import find_question
from exam_engine.core.scoring import (
    is_passing,
    rank_among_candidates,
    tally_session,
)
from exam_engine.core.session_lifecycle import get_owned_session
from exam_engine.models import (
    ExamAnswer,
    ExamCategory,
    ExamSession,
    SessionStatus,
    User,
)
from exam_engine.schemas.exam_sessions import (
    LeaderboardPosition,
    QuestionReview,
    ResultsResponse,
)

logger = logging.getLogger(__name__)

RANKED_CATEGORIES = frozenset({ExamCategory.COMPETITION, ExamCategory.CHALLENGE})


def _build_review(db: Session, session: ExamSession) -> List[QuestionReview]:
    """Per-question review of the answered questions, in session order."""
    answers: Dict[int, ExamAnswer] = {
        answer.question_id: answer
        for answer in db.query(ExamAnswer)
        .filter(ExamAnswer.session_id == session.id)
        .all()
    }

    review = []
    for question_id in session.question_order:
        answer = answers.get(question_id)
        if answer is None:
            continue
        question = find_question(db, question_id)
        if question is None:
            continue

        if answer.selected_option_id is not None:
            selected = question.option(answer.selected_option_id)
            user_answer = selected.text if selected else None
        else:
            user_answer = answer.text_answer

        correct_id = question.correct_option_id
        correct = question.option(correct_id) if correct_id is not None else None

        review.append(
            QuestionReview(
                question_id=question.id,
                question_text=question.text,
                user_answer=user_answer,
                correct_answer=correct.text if correct else None,
                is_correct=answer.is_correct,
                explanation=question.explanation,
            )
        )
    return review


def get_results(db: Session, user: User, session_id: int) -> ResultsResponse:
    """
    Compile the results of a completed session.

    Args:
        db: Database session
        user: Authenticated user
        session_id: Completed session

    Returns:
        ResultsResponse; practice sessions include a review and competitive
        categories include a best-effort leaderboard position

    Raises:
        ExamSessionError: SESSION_NOT_FOUND or SESSION_NOT_COMPLETED
    """
    session = get_owned_session(db, session_id, user)
    if session.status != SessionStatus.COMPLETED:
        raise_engine_error(ErrorCode.SESSION_NOT_COMPLETED, status=session.status.value)

    exam = session.exam
    tally = tally_session(db, session)
    score = session.score if session.score is not None else tally.score
    if abs(tally.score - score) > 1e-6:
        logger.warning(
            f"Stored score {score} for session {session.id} differs from "
            f"recomputed {tally.score}",
            extra={"session_id": session.id},
        )

    time_spent = (
        db.query(func.coalesce(func.sum(ExamAnswer.time_spent), 0))
        .filter(ExamAnswer.session_id == session.id)
        .scalar()
    )

    review: Optional[List[QuestionReview]] = None
    if session.category == ExamCategory.PRACTICE:
        review = _build_review(db, session)

    ranking: Optional[LeaderboardPosition] = None
    if session.category in RANKED_CATEGORIES:
        with graceful_failure(
            "compute leaderboard position", logger, context={"session_id": session.id}
        ):
            position = rank_among_candidates(db, session)
            ranking = LeaderboardPosition(
                rank=position.rank,
                participants=position.participants,
                percentile=position.percentile,
            )

    return ResultsResponse(
        session_id=session.id,
        exam_id=session.exam_id,
        exam_title=exam.title,
        category=session.category,
        score=score,
        correct_answers=tally.correct_answers,
        total_questions=session.total_questions,
        answered_questions=session.answered_questions,
        passing_score=exam.passing_score,
        passed=is_passing(score, exam.passing_score),
        time_spent=int(time_spent or 0),
        violation_count=session.violation_count,
        started_at=timing.ensure_timezone_aware(session.started_at),
        completed_at=timing.ensure_timezone_aware(session.completed_at),
        review=review,
        ranking=ranking,
    )
