"""
Database models for the exam session engine.

Exams, questions, options and invitations are authored elsewhere and are
read-only here. The engine writes sessions, answers and violations.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Text,
    JSON,
    UniqueConstraint,
    Index,
    CheckConstraint,
    text,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum

from .base import Base
from .types import IdList, value_enum


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExamCategory(str, enum.Enum):
    """Exam category enumeration."""

    PRACTICE = "practice"
    TEST = "test"
    RECRUITMENT = "recruitment"
    COMPETITION = "competition"
    CHALLENGE = "challenge"


class ExamStatus(str, enum.Enum):
    """Publication status of an exam."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class QuestionType(str, enum.Enum):
    """Question type; grading is dispatched on this tag."""

    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    TEXT = "text"


class SessionStatus(str, enum.Enum):
    """Exam session status. Everything except ACTIVE is terminal."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    EXPIRED = "expired"


class ViolationType(str, enum.Enum):
    """Client-reported proctoring events."""

    TAB_SWITCH = "tab_switch"
    WINDOW_BLUR = "window_blur"
    COPY_ATTEMPT = "copy_attempt"
    PASTE_ATTEMPT = "paste_attempt"
    FULLSCREEN_EXIT = "fullscreen_exit"


class User(Base):
    """Minimal identity row referenced by sessions and invitations."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)

    exam_sessions = relationship("ExamSession", back_populates="user")


class Exam(Base):
    """Exam definition."""

    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    exam_type = Column(String(100), nullable=True)  # Display label, e.g. "Mock"
    subject = Column(String(255), nullable=True)
    category = Column(value_enum(ExamCategory), nullable=True)  # NULL means practice
    duration = Column(Integer, nullable=True)  # minutes
    passing_score = Column(Float, nullable=True)  # percentage 0-100
    max_attempts = Column(Integer, nullable=True)  # NULL means unlimited
    shuffle_questions = Column(Boolean, default=False, nullable=False)
    randomize_options = Column(Boolean, default=False, nullable=False)
    is_public = Column(Boolean, default=True, nullable=False)
    status = Column(
        value_enum(ExamStatus), default=ExamStatus.DRAFT, nullable=False, index=True
    )
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)  # soft delete

    exam_questions = relationship(
        "ExamQuestion",
        back_populates="exam",
        order_by="ExamQuestion.order_index",
        cascade="all, delete-orphan",
    )
    invitations = relationship("ExamInvitation", back_populates="exam")

    __table_args__ = (
        CheckConstraint(
            "passing_score IS NULL OR (passing_score >= 0 AND passing_score <= 100)",
            name="ck_exams_passing_score_range",
        ),
        CheckConstraint(
            "max_attempts IS NULL OR max_attempts > 0",
            name="ck_exams_max_attempts_positive",
        ),
    )

    @property
    def effective_category(self) -> ExamCategory:
        return self.category or ExamCategory.PRACTICE


class Question(Base):
    """Question content. Text and explanation may be stored encrypted."""

    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    question_type = Column(
        value_enum(QuestionType), default=QuestionType.MULTIPLE_CHOICE, nullable=False
    )
    question_text = Column(Text, nullable=False)
    point_value = Column(Integer, default=1, nullable=False)
    explanation = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    options = relationship(
        "QuestionOption",
        back_populates="question",
        order_by="QuestionOption.order_index",
        cascade="all, delete-orphan",
    )


class QuestionOption(Base):
    """Answer option of a choice question."""

    __tablename__ = "question_options"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(
        Integer,
        ForeignKey("questions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    option_text = Column(Text, nullable=False)
    is_correct = Column(Boolean, default=False, nullable=False)
    order_index = Column(Integer, default=0, nullable=False)

    question = relationship("Question", back_populates="options")


class ExamQuestion(Base):
    """Membership and authored order of a question within an exam."""

    __tablename__ = "exam_questions"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(
        Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id = Column(
        Integer,
        ForeignKey("questions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    order_index = Column(Integer, default=0, nullable=False)

    exam = relationship("Exam", back_populates="exam_questions")
    question = relationship("Question")

    __table_args__ = (
        UniqueConstraint("exam_id", "question_id", name="uq_exam_question"),
    )


class ExamSession(Base):
    """One candidate's attempt at an exam."""

    __tablename__ = "exam_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    exam_id = Column(
        Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category = Column(value_enum(ExamCategory), nullable=False)  # snapshot at start
    started_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    time_limit = Column(Integer, nullable=True)  # minutes; NULL means untimed
    total_questions = Column(Integer, nullable=False)
    answered_questions = Column(Integer, default=0, nullable=False)
    violation_count = Column(Integer, default=0, nullable=False)
    question_order = Column(IdList(), nullable=False)  # fixed at creation
    shuffle_questions = Column(Boolean, default=False, nullable=False)
    shuffle_options = Column(Boolean, default=False, nullable=False)
    status = Column(
        value_enum(SessionStatus),
        default=SessionStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    score = Column(Float, nullable=True)  # percentage, written once on completion
    updated_at = Column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now, nullable=False
    )

    user = relationship("User", back_populates="exam_sessions")
    exam = relationship("Exam")
    answers = relationship(
        "ExamAnswer", back_populates="session", cascade="all, delete-orphan"
    )
    violations = relationship(
        "ExamViolation", back_populates="session", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_exam_sessions_user_exam_status", "user_id", "exam_id", "status"),
        # At most one active session per user across all exams. A racing
        # second start fails with IntegrityError.
        Index(
            "ix_exam_sessions_user_active",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        CheckConstraint(
            "answered_questions >= 0 AND answered_questions <= total_questions",
            name="ck_exam_sessions_answered_range",
        ),
        CheckConstraint("violation_count >= 0", name="ck_exam_sessions_violations"),
    )


class ExamAnswer(Base):
    """A candidate's answer to one question. Immutable once written."""

    __tablename__ = "exam_answers"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer,
        ForeignKey("exam_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_id = Column(
        Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False
    )
    selected_option_id = Column(
        Integer, ForeignKey("question_options.id", ondelete="SET NULL"), nullable=True
    )
    text_answer = Column(Text, nullable=True)
    is_correct = Column(Boolean, nullable=True)  # NULL for ungraded types
    time_spent = Column(Integer, default=0, nullable=False)  # seconds
    answered_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)

    session = relationship("ExamSession", back_populates="answers")
    question = relationship("Question")
    selected_option = relationship("QuestionOption")

    __table_args__ = (
        # Authoritative duplicate-answer guard
        UniqueConstraint(
            "session_id", "question_id", name="uq_exam_answer_session_question"
        ),
        CheckConstraint("time_spent >= 0", name="ck_exam_answers_time_spent"),
    )


class ExamViolation(Base):
    """Append-only log of proctoring events."""

    __tablename__ = "exam_violations"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer,
        ForeignKey("exam_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(value_enum(ViolationType), nullable=False)
    timestamp = Column(DateTime(timezone=True), default=_utc_now, nullable=False)
    violation_metadata = Column("metadata", JSON, nullable=True)

    session = relationship("ExamSession", back_populates="violations")


class ExamInvitation(Base):
    """Single-use invitation for gated exam categories."""

    __tablename__ = "exam_invitations"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(
        Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )  # NULL means any signed-in user may redeem it
    email = Column(String(255), nullable=True)
    token = Column(String(255), unique=True, index=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)  # set exactly once
    created_at = Column(DateTime(timezone=True), default=_utc_now, nullable=False)

    exam = relationship("Exam", back_populates="invitations")
