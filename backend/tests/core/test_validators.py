"""
Tests for request schema validation and answer sanitization.
"""
import pytest
from pydantic import ValidationError

from exam_engine.core.validators import StringSanitizer
from exam_engine.schemas.exam_sessions import SessionConfig, SubmitAnswerRequest


class TestSanitizeAnswer:
    """Tests for StringSanitizer.sanitize_answer."""

    def test_strips_control_characters_and_whitespace(self):
        """Control characters and surrounding whitespace are removed."""
        assert StringSanitizer.sanitize_answer("  ans\x00wer\x07 ", 100) == "answer"

    def test_keeps_newlines(self):
        """Newlines and tabs survive sanitization."""
        assert StringSanitizer.sanitize_answer("line1\nline2\t!", 100) == (
            "line1\nline2\t!"
        )

    def test_escapes_html(self):
        """Markup is escaped."""
        result = StringSanitizer.sanitize_answer("<b>bold</b>", 100)

        assert result == "&lt;b&gt;bold&lt;/b&gt;"

    def test_length_limit_applies_before_escaping(self):
        """Escaping may grow the text past the limit without failing."""
        assert StringSanitizer.sanitize_answer("<" * 10, 10) == "&lt;" * 10

    def test_too_long_rejected(self):
        """Answers over the limit are rejected."""
        with pytest.raises(ValueError):
            StringSanitizer.sanitize_answer("x" * 11, 10)


class TestSessionConfig:
    """Tests for SessionConfig bounds."""

    def test_valid_config(self):
        """In-range values are accepted."""
        config = SessionConfig(num_questions=80, time_limit=600)

        assert config.num_questions == 80
        assert config.shuffle_questions is False

    @pytest.mark.parametrize("num_questions", [0, 81])
    def test_question_count_bounds(self, num_questions):
        """Question count must be within 1..80."""
        with pytest.raises(ValidationError):
            SessionConfig(num_questions=num_questions)

    @pytest.mark.parametrize("time_limit", [0, 601])
    def test_time_limit_bounds(self, time_limit):
        """Time limit must be within 1..600 minutes."""
        with pytest.raises(ValidationError):
            SessionConfig(num_questions=5, time_limit=time_limit)

    def test_time_limit_optional(self):
        """Practice sessions may be untimed."""
        assert SessionConfig(num_questions=5).time_limit is None


class TestSubmitAnswerRequest:
    """Tests for SubmitAnswerRequest validation."""

    def test_text_answer_is_sanitized(self):
        """Free text is sanitized on the way in."""
        request = SubmitAnswerRequest(question_id=1, text_answer="  <i>x</i> ")

        assert request.text_answer == "&lt;i&gt;x&lt;/i&gt;"

    def test_text_answer_length_limit(self):
        """Text answers over 5000 characters are rejected."""
        with pytest.raises(ValidationError):
            SubmitAnswerRequest(question_id=1, text_answer="a" * 5001)

    def test_negative_time_spent_rejected(self):
        """Time spent cannot be negative."""
        with pytest.raises(ValidationError):
            SubmitAnswerRequest(question_id=1, selected_option_id=2, time_spent=-1)

    def test_question_id_must_be_positive(self):
        """Question ids are positive."""
        with pytest.raises(ValidationError):
            SubmitAnswerRequest(question_id=0)
