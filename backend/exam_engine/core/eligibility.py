"""
Exam eligibility resolution.

Decides whether a user may start an attempt at an exam. Checks run in a
fixed order and stop at the first failure:

1. exam exists and is not soft-deleted
2. exam is published
3. now is inside the publication window (missing bounds are open)
4. access mode: invitation for gated categories, public when the exam is
   public, otherwise direct (private exams have no entry path here)
5. invitation-gated: token present, for this exam, unexpired, unused, and
   either unbound or bound to this user
6. completed attempts below ``max_attempts``

Resolution is read-only. Invitations are consumed by session start, never
here, so inspecting access does not burn a single-use token.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from exam_engine.core.error_responses import ErrorCode, raise_engine_error
from exam_engine.core.question_store import exam_question_ids, find_exam
from exam_engine.core.timing import ensure_timezone_aware, utc_now
from exam_engine.models import (
    Exam,
    ExamCategory,
    ExamInvitation,
    ExamSession,
    ExamStatus,
    SessionStatus,
    User,
)
from exam_engine.schemas.exam_sessions import AccessCheckResponse, InstructionsResponse

logger = logging.getLogger(__name__)


class AccessType(str, enum.Enum):
    INVITATION = "invitation"
    PUBLIC = "public"
    DIRECT = "direct"


INVITATION_CATEGORIES = frozenset(
    {ExamCategory.RECRUITMENT, ExamCategory.COMPETITION, ExamCategory.CHALLENGE}
)
# Candidates pick question count, shuffling and time limit themselves
CONFIGURABLE_CATEGORIES = frozenset({ExamCategory.PRACTICE, ExamCategory.TEST})
# Client-side anti-cheat monitoring is enforced
PROCTORED_CATEGORIES = frozenset(
    {ExamCategory.TEST, ExamCategory.RECRUITMENT, ExamCategory.COMPETITION}
)


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of a successful eligibility check."""

    exam: Exam
    category: ExamCategory
    access_type: AccessType
    attempts_used: int
    invitation: Optional[ExamInvitation] = None

    @property
    def requires_config(self) -> bool:
        return self.category in CONFIGURABLE_CATEGORIES

    def to_response(self) -> AccessCheckResponse:
        return AccessCheckResponse(
            exam_id=self.exam.id,
            title=self.exam.title,
            category=self.category,
            access_type=self.access_type.value,
            requires_config=self.requires_config,
            attempts_used=self.attempts_used,
            max_attempts=self.exam.max_attempts,
        )


def resolve_access_type(exam: Exam) -> AccessType:
    """Access mode implied by the exam's category and visibility."""
    if exam.effective_category in INVITATION_CATEGORIES:
        return AccessType.INVITATION
    return AccessType.PUBLIC if exam.is_public else AccessType.DIRECT


def count_completed_attempts(db: Session, user_id: int, exam_id: int) -> int:
    """Number of this user's completed sessions for the exam."""
    return (
        db.query(func.count(ExamSession.id))
        .filter(
            ExamSession.user_id == user_id,
            ExamSession.exam_id == exam_id,
            ExamSession.status == SessionStatus.COMPLETED,
        )
        .scalar()
        or 0
    )


def _check_window(exam: Exam, now: datetime) -> None:
    if exam.start_date is not None and now < ensure_timezone_aware(exam.start_date):
        raise_engine_error(ErrorCode.EXAM_NOT_STARTED)
    if exam.end_date is not None and now > ensure_timezone_aware(exam.end_date):
        raise_engine_error(ErrorCode.EXAM_EXPIRED)


def _validate_invitation(
    db: Session,
    exam: Exam,
    user: User,
    token: Optional[str],
    now: datetime,
) -> ExamInvitation:
    if not token:
        raise_engine_error(ErrorCode.INVITATION_REQUIRED)

    invitation = db.query(ExamInvitation).filter(ExamInvitation.token == token).first()
    if invitation is None or invitation.exam_id != exam.id:
        raise_engine_error(ErrorCode.INVALID_INVITATION)
    if now > ensure_timezone_aware(invitation.expires_at):
        raise_engine_error(ErrorCode.INVITATION_EXPIRED)
    if invitation.used_at is not None:
        raise_engine_error(ErrorCode.INVITATION_USED)
    if invitation.user_id is not None and invitation.user_id != user.id:
        raise_engine_error(ErrorCode.INVALID_USER)
    return invitation


def check_access(
    db: Session,
    user: User,
    exam_id: int,
    invitation_token: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AccessDecision:
    """
    Validate that ``user`` may start an attempt at ``exam_id``.

    Args:
        db: Database session
        user: Authenticated user
        exam_id: Exam to check
        invitation_token: Token for invitation-gated categories
        now: Evaluation time (defaults to ``utc_now()``)

    Returns:
        AccessDecision describing the exam and how it is accessed

    Raises:
        ExamSessionError: with the code of the first failed check
    """
    now = now or utc_now()

    exam = find_exam(db, exam_id)
    if exam is None:
        raise_engine_error(ErrorCode.EXAM_NOT_FOUND)
    if exam.status != ExamStatus.PUBLISHED:
        raise_engine_error(ErrorCode.EXAM_UNAVAILABLE)

    _check_window(exam, now)

    access_type = resolve_access_type(exam)
    invitation = None
    if access_type == AccessType.INVITATION:
        invitation = _validate_invitation(db, exam, user, invitation_token, now)
    elif access_type == AccessType.DIRECT:
        raise_engine_error(ErrorCode.EXAM_PRIVATE)

    attempts_used = count_completed_attempts(db, user.id, exam.id)
    if exam.max_attempts is not None and attempts_used >= exam.max_attempts:
        raise_engine_error(
            ErrorCode.MAX_ATTEMPTS_REACHED,
            attempts_used=attempts_used,
            max_attempts=exam.max_attempts,
        )

    logger.debug(
        f"User {user.id} may access exam {exam.id} "
        f"({access_type.value}, {attempts_used} completed attempts)"
    )
    return AccessDecision(
        exam=exam,
        category=exam.effective_category,
        access_type=access_type,
        attempts_used=attempts_used,
        invitation=invitation,
    )


def get_instructions(
    db: Session,
    user: User,
    exam_id: int,
    invitation_token: Optional[str] = None,
) -> InstructionsResponse:
    """Build the pre-exam instruction sheet for an exam the user may take."""
    decision = check_access(db, user, exam_id, invitation_token)
    exam = decision.exam
    total_questions = len(exam_question_ids(db, exam.id))

    instructions: List[str] = [
        f"Exam Type: {exam.exam_type or decision.category.value.title()}",
        f"Subject: {exam.subject or 'General'}",
        f"Total Questions: {total_questions}",
    ]
    if exam.duration:
        instructions.append(f"Time Limit: {exam.duration} minutes")
    if exam.shuffle_questions:
        instructions.append("Questions will be shuffled")
    if exam.randomize_options:
        instructions.append("Answer options will be randomized")
    if decision.category in PROCTORED_CATEGORIES:
        instructions.extend(
            [
                "Anti-cheat monitoring is enabled",
                "Do not switch tabs or minimize the browser",
                "Fullscreen mode will be enforced",
                "Copy/paste actions are disabled",
            ]
        )
    if exam.passing_score is not None:
        instructions.append(f"Passing Score: {exam.passing_score:g}%")

    return InstructionsResponse(
        exam_id=exam.id,
        title=exam.title,
        description=exam.description,
        category=decision.category,
        instructions=instructions,
        requires_config=decision.requires_config,
        total_questions=total_questions,
        time_limit=exam.duration,
        passing_score=exam.passing_score,
    )
