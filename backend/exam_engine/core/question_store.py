"""
Read-only access to exams and questions.

Every lookup goes to the database; nothing is cached, so correctness flags
always reflect the question as of the read. Encrypted content is decrypted
here and never leaves this module in envelope form.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session, selectinload

from exam_engine.core.encryption import DecryptionError, decrypt_field
from exam_engine.core.error_responses import ErrorCode, raise_engine_error
from exam_engine.models import Exam, ExamQuestion, Question, QuestionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptionRecord:
    id: int
    text: str
    is_correct: bool


@dataclass(frozen=True)
class QuestionRecord:
    """Decrypted snapshot of a question and its options."""

    id: int
    type: QuestionType
    text: str
    point_value: int
    explanation: Optional[str]
    options: List[OptionRecord] = field(default_factory=list)

    @property
    def correct_option_id(self) -> Optional[int]:
        for option in self.options:
            if option.is_correct:
                return option.id
        return None

    def option(self, option_id: int) -> Optional[OptionRecord]:
        for option in self.options:
            if option.id == option_id:
                return option
        return None


def find_exam(db: Session, exam_id: int) -> Optional[Exam]:
    """Fetch an exam that has not been soft-deleted."""
    return (
        db.query(Exam)
        .filter(Exam.id == exam_id, Exam.deleted_at.is_(None))
        .first()
    )


def exam_question_ids(db: Session, exam_id: int) -> List[int]:
    """Ids of the exam's live questions in authored order."""
    rows = (
        db.query(ExamQuestion.question_id)
        .join(Question, Question.id == ExamQuestion.question_id)
        .filter(ExamQuestion.exam_id == exam_id, Question.deleted_at.is_(None))
        .order_by(ExamQuestion.order_index, ExamQuestion.id)
        .all()
    )
    return [row.question_id for row in rows]


def find_question(db: Session, question_id: int) -> Optional[QuestionRecord]:
    """
    Load and decrypt a question.

    Args:
        db: Database session
        question_id: Question to load

    Returns:
        QuestionRecord, or None if the question does not exist or is deleted

    Raises:
        ExamSessionError: INTERNAL_ERROR when stored content cannot be decrypted
    """
    question = (
        db.query(Question)
        .options(selectinload(Question.options))
        .filter(Question.id == question_id, Question.deleted_at.is_(None))
        .first()
    )
    if question is None:
        return None

    try:
        return QuestionRecord(
            id=question.id,
            type=question.question_type,
            text=decrypt_field(question.question_text) or "",
            point_value=question.point_value,
            explanation=decrypt_field(question.explanation),
            options=[
                OptionRecord(
                    id=option.id,
                    text=decrypt_field(option.option_text) or "",
                    is_correct=bool(option.is_correct),
                )
                for option in question.options
            ],
        )
    except DecryptionError as e:
        logger.error(f"Failed to decrypt question {question_id}: {e}")
        raise_engine_error(ErrorCode.INTERNAL_ERROR)


def get_question_or_error(db: Session, question_id: int) -> QuestionRecord:
    """Like :func:`find_question` but raises QUESTION_NOT_FOUND when missing."""
    record = find_question(db, question_id)
    if record is None:
        raise_engine_error(ErrorCode.QUESTION_NOT_FOUND)
    return record
