"""
Tests for question lookups and at-rest decryption.
"""
import pytest

from exam_engine.core.config import settings
from exam_engine.core.encryption import encrypt_field
from exam_engine.core.error_responses import ErrorCode, ExamSessionError
from exam_engine.core.question_store import (
    exam_question_ids,
    find_exam,
    find_question,
    get_question_or_error,
)
from exam_engine.core.timing import utc_now
from exam_engine.models import Question

KEY = "question-bank-passphrase"


@pytest.fixture
def encryption_key(monkeypatch):
    monkeypatch.setattr(settings, "QUESTION_ENCRYPTION_KEY", KEY)
    return KEY


class TestFindQuestion:
    """Tests for find_question."""

    def test_plain_question(self, db_session, exam_factory):
        exam = exam_factory(num_questions=1)
        question_id = exam.exam_questions[0].question_id

        record = find_question(db_session, question_id)

        assert record.text == "Question 1"
        assert record.explanation == "Explanation 1"
        assert [o.text for o in record.options] == ["Correct 1", "Wrong 1a", "Wrong 1b"]
        assert record.correct_option_id == record.options[0].id

    def test_encrypted_question_is_decrypted(
        self, db_session, exam_factory, encryption_key
    ):
        exam = exam_factory(num_questions=1)
        question = exam.exam_questions[0].question
        question.question_text = encrypt_field("What is 6 x 7?")
        question.options[0].option_text = encrypt_field("42")
        db_session.commit()

        record = find_question(db_session, question.id)

        assert record.text == "What is 6 x 7?"
        assert record.options[0].text == "42"

    def test_undecryptable_question(self, db_session, exam_factory, monkeypatch):
        """Content encrypted under another key is an internal error."""
        exam = exam_factory(num_questions=1)
        question = exam.exam_questions[0].question
        question.question_text = encrypt_field("Secret", passphrase="old-key")
        db_session.commit()
        monkeypatch.setattr(settings, "QUESTION_ENCRYPTION_KEY", KEY)

        with pytest.raises(ExamSessionError) as excinfo:
            find_question(db_session, question.id)

        assert excinfo.value.code == ErrorCode.INTERNAL_ERROR

    def test_deleted_question(self, db_session, exam_factory):
        exam = exam_factory(num_questions=1)
        question = exam.exam_questions[0].question
        question.deleted_at = utc_now()
        db_session.commit()

        assert find_question(db_session, question.id) is None
        with pytest.raises(ExamSessionError) as excinfo:
            get_question_or_error(db_session, question.id)
        assert excinfo.value.code == ErrorCode.QUESTION_NOT_FOUND


class TestExamLookups:
    def test_question_ids_in_authored_order(self, db_session, exam_factory):
        exam = exam_factory(num_questions=4)

        ids = exam_question_ids(db_session, exam.id)

        assert ids == [eq.question_id for eq in exam.exam_questions]
        assert all(db_session.get(Question, qid) for qid in ids)

    def test_deleted_exam_not_found(self, db_session, exam_factory):
        exam = exam_factory()
        exam.deleted_at = utc_now()
        db_session.commit()

        assert find_exam(db_session, exam.id) is None
