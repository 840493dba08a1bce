"""
Pytest configuration and shared fixtures for testing.
"""
import os
import sys
from pathlib import Path

# Required settings must exist before exam_engine.core.config is imported
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DEBUG", "False")

# Make the backend directory importable when running pytest from anywhere
backend_root = Path(__file__).parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from contextlib import asynccontextmanager  # noqa: E402
from datetime import timedelta  # noqa: E402
from typing import List, Optional  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from exam_engine.core.security import create_access_token  # noqa: E402
from exam_engine.core.timing import utc_now  # noqa: E402
from exam_engine.main import app  # noqa: E402
from exam_engine.models import (  # noqa: E402
    Base,
    Exam,
    ExamCategory,
    ExamInvitation,
    ExamQuestion,
    ExamStatus,
    Question,
    QuestionOption,
    QuestionType,
    User,
    get_db,
)
from exam_engine.schemas.exam_sessions import SessionConfig  # noqa: E402


@asynccontextmanager
async def _test_lifespan(app):
    """No-op lifespan for tests.

    Skips Sentry initialization.
    """
    yield


# Neutralize the production lifespan on the singleton app.
app.router.lifespan_context = _test_lifespan


# Use SQLite for tests; path is relative to this file so the .db
# lands inside tests/ regardless of the working directory.
_TEST_DB = Path(__file__).parent / "test.db"
SQLALCHEMY_DATABASE_URL = f"sqlite:///{_TEST_DB}"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    """
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """
    Create a test client with database dependency override.
    """

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_user(db_session, email: str, name: str) -> User:
    user = User(email=email, name=name)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def test_user(db_session):
    """
    Create a test user in the database.
    """
    return _create_user(db_session, "test@example.com", "Test User")


@pytest.fixture
def other_user(db_session):
    """
    Create a second user for ownership and ranking tests.
    """
    return _create_user(db_session, "other@example.com", "Other User")


@pytest.fixture
def auth_headers(test_user):
    """
    Create authentication headers for test user.
    """
    access_token = create_access_token({"user_id": test_user.id})
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def exam_factory(db_session):
    """
    Build a published exam with ``num_questions`` questions.

    Choice questions get three options, the first one correct. Question
    text is ``Question N`` and explanations ``Explanation N``.
    """

    def _create(
        num_questions: int = 5,
        category: Optional[ExamCategory] = ExamCategory.PRACTICE,
        question_type: QuestionType = QuestionType.MULTIPLE_CHOICE,
        **overrides,
    ) -> Exam:
        fields = {
            "title": f"{(category or ExamCategory.PRACTICE).value.title()} Exam",
            "description": "Exam used in tests",
            "subject": "Mathematics",
            "category": category,
            "status": ExamStatus.PUBLISHED,
            "is_public": True,
            "shuffle_questions": False,
            "randomize_options": False,
        }
        fields.update(overrides)
        exam = Exam(**fields)
        db_session.add(exam)
        db_session.flush()

        for i in range(num_questions):
            question = Question(
                question_type=question_type,
                question_text=f"Question {i + 1}",
                point_value=1,
                explanation=f"Explanation {i + 1}",
            )
            if question_type != QuestionType.TEXT:
                question.options = [
                    QuestionOption(
                        option_text=f"Correct {i + 1}", is_correct=True, order_index=0
                    ),
                    QuestionOption(
                        option_text=f"Wrong {i + 1}a", is_correct=False, order_index=1
                    ),
                    QuestionOption(
                        option_text=f"Wrong {i + 1}b", is_correct=False, order_index=2
                    ),
                ]
            db_session.add(question)
            db_session.flush()
            db_session.add(
                ExamQuestion(exam_id=exam.id, question_id=question.id, order_index=i)
            )

        db_session.commit()
        db_session.refresh(exam)
        return exam

    return _create


@pytest.fixture
def invitation_factory(db_session):
    """
    Create an invitation token for an exam.
    """

    def _create(
        exam: Exam,
        token: str = "invite-token",
        user: Optional[User] = None,
        expires_in: timedelta = timedelta(days=7),
        used: bool = False,
    ) -> ExamInvitation:
        invitation = ExamInvitation(
            exam_id=exam.id,
            user_id=user.id if user else None,
            email=user.email if user else None,
            token=token,
            expires_at=utc_now() + expires_in,
            used_at=utc_now() if used else None,
        )
        db_session.add(invitation)
        db_session.commit()
        db_session.refresh(invitation)
        return invitation

    return _create


@pytest.fixture
def practice_config():
    """Default configuration for practice and test exam sessions."""
    return SessionConfig(num_questions=5, time_limit=30)


def correct_option_id(db_session, question_id: int) -> int:
    """Id of the option flagged correct for a question."""
    return (
        db_session.query(QuestionOption.id)
        .filter(
            QuestionOption.question_id == question_id,
            QuestionOption.is_correct.is_(True),
        )
        .scalar()
    )


def wrong_option_id(db_session, question_id: int) -> int:
    """Id of one option flagged incorrect for a question."""
    return (
        db_session.query(QuestionOption.id)
        .filter(
            QuestionOption.question_id == question_id,
            QuestionOption.is_correct.is_(False),
        )
        .order_by(QuestionOption.order_index)
        .limit(1)
        .scalar()
    )


def question_ids(exam: Exam) -> List[int]:
    return [eq.question_id for eq in exam.exam_questions]
