"""
Pydantic schemas for exam session endpoints.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime

from exam_engine.core.config import settings
from exam_engine.core.validators import StringSanitizer, TextValidator
from exam_engine.models.models import (
    ExamCategory,
    QuestionType,
    SessionStatus,
    ViolationType,
)


# =============================================================================
# Requests
# =============================================================================


class SessionConfig(BaseModel):
    """Candidate-chosen settings for practice and test exams."""

    num_questions: int = Field(..., description="Number of questions to draw")
    shuffle_questions: bool = Field(False, description="Randomize question order")
    shuffle_options: bool = Field(False, description="Randomize option order")
    time_limit: Optional[int] = Field(
        None, description="Time limit in minutes (required for test exams)"
    )

    @field_validator("num_questions")
    @classmethod
    def validate_num_questions(cls, v: int) -> int:
        if not settings.EXAM_MIN_QUESTIONS <= v <= settings.EXAM_MAX_QUESTIONS:
            raise ValueError(
                f"Number of questions must be between {settings.EXAM_MIN_QUESTIONS} "
                f"and {settings.EXAM_MAX_QUESTIONS}"
            )
        return v

    @field_validator("time_limit")
    @classmethod
    def validate_time_limit(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not (
            settings.EXAM_MIN_TIME_LIMIT <= v <= settings.EXAM_MAX_TIME_LIMIT
        ):
            raise ValueError(
                f"Time limit must be between {settings.EXAM_MIN_TIME_LIMIT} "
                f"and {settings.EXAM_MAX_TIME_LIMIT} minutes"
            )
        return v


class StartSessionRequest(BaseModel):
    """Schema for starting an exam session."""

    invitation_token: Optional[str] = Field(
        None, description="Invitation token for invitation-only exams"
    )
    config: Optional[SessionConfig] = Field(
        None, description="Session configuration (practice and test exams)"
    )


class SubmitAnswerRequest(BaseModel):
    """Schema for submitting one answer."""

    question_id: int = Field(..., description="ID of the question being answered")
    selected_option_id: Optional[int] = Field(
        None, description="Chosen option for choice questions"
    )
    text_answer: Optional[str] = Field(
        None, description="Free-text answer for text questions"
    )
    time_spent: int = Field(0, description="Seconds spent on this question")

    @field_validator("question_id")
    @classmethod
    def validate_question_id(cls, v: int) -> int:
        return TextValidator.validate_positive_id(v, "Question ID")

    @field_validator("time_spent")
    @classmethod
    def validate_time_spent(cls, v: int) -> int:
        return TextValidator.validate_non_negative_int(v, "Time spent")

    @field_validator("text_answer")
    @classmethod
    def sanitize_text_answer(cls, v: Optional[str]) -> Optional[str]:
        """Strip, bound and HTML-escape the free-text answer."""
        if v is None:
            return None
        return StringSanitizer.sanitize_answer(
            v, max_length=settings.EXAM_TEXT_ANSWER_MAX_LENGTH
        )


class RecordViolationRequest(BaseModel):
    """Schema for reporting a proctoring event."""

    type: ViolationType = Field(..., description="Kind of violation observed")
    metadata: Optional[Dict[str, Any]] = Field(
        None, description="Client-supplied context for the event"
    )


# =============================================================================
# Responses
# =============================================================================


class AccessCheckResponse(BaseModel):
    """Result of an eligibility check."""

    exam_id: int
    title: str
    category: ExamCategory
    access_type: str = Field(..., description="invitation, public or direct")
    requires_config: bool = Field(
        ..., description="Whether the candidate must configure the session first"
    )
    attempts_used: int = Field(..., description="Completed attempts so far")
    max_attempts: Optional[int] = None


class InstructionsResponse(BaseModel):
    """Pre-exam instructions."""

    exam_id: int
    title: str
    description: Optional[str] = None
    category: ExamCategory
    instructions: List[str]
    requires_config: bool
    total_questions: int
    time_limit: Optional[int] = Field(None, description="Fixed duration in minutes")
    passing_score: Optional[float] = None


class StartSessionResponse(BaseModel):
    """A newly created session."""

    session_id: int
    exam_id: int
    started_at: datetime
    server_end_time: Optional[datetime] = Field(
        None, description="Authoritative deadline, for display only"
    )
    time_limit: Optional[int]
    total_questions: int
    shuffle_questions: bool
    shuffle_options: bool


class SessionStateResponse(BaseModel):
    """Public-safe projection of an active session."""

    session_id: int
    exam_id: int
    category: ExamCategory
    status: SessionStatus
    started_at: datetime
    server_end_time: Optional[datetime] = None
    time_limit: Optional[int] = None
    remaining_time: Optional[int] = Field(
        None, description="Seconds left; null for untimed sessions"
    )
    total_questions: int
    answered_questions: int
    violation_count: int
    question_order: List[int]
    answered_question_ids: List[int]


class OptionView(BaseModel):
    """Answer option without its correctness flag."""

    id: int
    text: str


class QuestionView(BaseModel):
    """A question as served during an active session."""

    index: int
    question_id: int
    type: QuestionType
    text: str
    point_value: int
    options: List[OptionView]
    answered: bool
    total_questions: int
    remaining_time: Optional[int] = None


class AnswerFeedback(BaseModel):
    """Immediate feedback, only ever returned for practice sessions."""

    is_correct: bool
    correct_option_id: Optional[int] = None
    explanation: Optional[str] = None


class SubmitAnswerResponse(BaseModel):
    """Result of a stored answer."""

    question_id: int
    answered_questions: int
    total_questions: int
    feedback: Optional[AnswerFeedback] = None


class ViolationResponse(BaseModel):
    """Violation tracker outcome."""

    recorded: bool = Field(..., description="False when the session was no longer active")
    violation_count: int
    violation_limit: int
    session_status: SessionStatus
    auto_completed: bool = Field(
        False, description="True when this violation force-completed the session"
    )


class TimeSyncResponse(BaseModel):
    """Server clock snapshot for the client countdown."""

    server_time: datetime
    remaining_time: Optional[int] = None
    server_end_time: Optional[datetime] = None


class AbandonResponse(BaseModel):
    session_id: int
    status: SessionStatus
    answered_questions: int


class CompleteResponse(BaseModel):
    """Terminal state of a completed session."""

    session_id: int
    status: SessionStatus
    score: float
    correct_answers: int
    total_questions: int
    completed_at: datetime
    already_completed: bool = Field(
        False, description="True when the session had already been completed"
    )


class QuestionReview(BaseModel):
    """Per-question review for practice results."""

    question_id: int
    question_text: str
    user_answer: Optional[str] = None
    correct_answer: Optional[str] = None
    is_correct: Optional[bool] = None
    explanation: Optional[str] = None


class LeaderboardPosition(BaseModel):
    """Rank among candidates with a completed attempt at the same exam."""

    rank: int
    participants: int
    percentile: float


class ResultsResponse(BaseModel):
    """Final results of a completed session."""

    session_id: int
    exam_id: int
    exam_title: str
    category: ExamCategory
    score: float
    correct_answers: int
    total_questions: int
    answered_questions: int
    passing_score: Optional[float] = None
    passed: Optional[bool] = Field(
        None, description="Null when the exam has no passing score"
    )
    time_spent: int = Field(..., description="Sum of per-answer time in seconds")
    violation_count: int
    started_at: datetime
    completed_at: datetime
    review: Optional[List[QuestionReview]] = None
    ranking: Optional[LeaderboardPosition] = None
