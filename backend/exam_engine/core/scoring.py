"""
Raw score calculation.

Scores are plain percentages: ``correct / total_questions * 100``.
Unanswered and ungraded questions count as not correct. Pass/fail is only
defined when the exam has a passing threshold.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from exam_engine.models import ExamAnswer, ExamSession, SessionStatus


@dataclass(frozen=True)
class SessionScore:
    correct_answers: int
    total_questions: int
    score: float


def calculate_score(correct_answers: int, total_questions: int) -> float:
    """
    Percentage of questions answered correctly.

    Args:
        correct_answers: Number of correct answers
        total_questions: Number of questions in the session

    Returns:
        Score in [0, 100]; 0.0 for an empty session
    """
    if total_questions <= 0:
        return 0.0
    return correct_answers / total_questions * 100


def tally_session(db: Session, session: ExamSession) -> SessionScore:
    """Score a session from its stored answers."""
    correct = (
        db.query(func.count(ExamAnswer.id))
        .filter(ExamAnswer.session_id == session.id, ExamAnswer.is_correct.is_(True))
        .scalar()
        or 0
    )
    return SessionScore(
        correct_answers=correct,
        total_questions=session.total_questions,
        score=calculate_score(correct, session.total_questions),
    )


def is_passing(score: float, passing_score: Optional[float]) -> Optional[bool]:
    """Pass/fail against the exam threshold; None when no threshold is set."""
    if passing_score is None:
        return None
    return score >= passing_score


@dataclass(frozen=True)
class RankPosition:
    rank: int
    participants: int
    percentile: float


def rank_among_candidates(db: Session, session: ExamSession) -> RankPosition:
    """
    Position of a completed session against other candidates' best scores.

    Each other user contributes their best completed score for the same
    exam. Rank is 1 + the number of candidates with a strictly higher
    score; percentile is the share of participants scoring strictly lower.

    Args:
        db: Database session
        session: A completed session with a score

    Returns:
        RankPosition for the session
    """
    best_scores = (
        db.query(func.max(ExamSession.score))
        .filter(
            ExamSession.exam_id == session.exam_id,
            ExamSession.status == SessionStatus.COMPLETED,
            ExamSession.user_id != session.user_id,
            ExamSession.score.isnot(None),
        )
        .group_by(ExamSession.user_id)
        .all()
    )
    others = [row[0] for row in best_scores]
    score = session.score or 0.0

    participants = len(others) + 1
    rank = 1 + sum(1 for other in others if other > score)
    below = sum(1 for other in others if other < score)
    percentile = round(below / participants * 100, 2)
    return RankPosition(rank=rank, participants=participants, percentile=percentile)
