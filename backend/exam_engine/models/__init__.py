"""
Models package for the exam session engine.
"""
from .base import Base, engine, SessionLocal, get_db
from .models import (
    User,
    Exam,
    ExamQuestion,
    Question,
    QuestionOption,
    ExamSession,
    ExamAnswer,
    ExamViolation,
    ExamInvitation,
    ExamCategory,
    ExamStatus,
    QuestionType,
    SessionStatus,
    ViolationType,
)

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_db",
    "User",
    "Exam",
    "ExamQuestion",
    "Question",
    "QuestionOption",
    "ExamSession",
    "ExamAnswer",
    "ExamViolation",
    "ExamInvitation",
    "ExamCategory",
    "ExamStatus",
    "QuestionType",
    "SessionStatus",
    "ViolationType",
]
