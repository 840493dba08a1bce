"""
Input validation and sanitization utilities.
"""

import html
import re
from typing import Optional


class StringSanitizer:
    """
    String sanitization for free-text answers and metadata.
    """

    # Control characters to strip (except newlines, tabs, carriage returns)
    CONTROL_CHARS_PATTERN = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

    @classmethod
    def _base_sanitize(cls, value: str, escape_html: bool = True) -> str:
        """
        Strip control characters and surrounding whitespace, then optionally
        escape HTML.
        """
        value = cls.CONTROL_CHARS_PATTERN.sub("", value)
        value = value.strip()
        if escape_html:
            value = html.escape(value)
        return value

    @classmethod
    def sanitize_answer(cls, answer: str, max_length: int) -> str:
        """
        Sanitize a free-text answer.

        The length limit applies to what the candidate typed, before HTML
        escaping expands entities.

        Args:
            answer: Raw answer text
            max_length: Maximum accepted length

        Returns:
            Sanitized, HTML-escaped answer

        Raises:
            ValueError: If the answer is longer than ``max_length``
        """
        answer = cls._base_sanitize(answer, escape_html=False)
        if len(answer) > max_length:
            raise ValueError(f"Answer must not exceed {max_length} characters")
        return html.escape(answer)


class TextValidator:
    """
    Validation helpers for schema fields.
    """

    @staticmethod
    def validate_non_negative_int(
        value: Optional[int], field_name: str = "Value"
    ) -> Optional[int]:
        """
        Validate that an optional integer is non-negative.

        Raises:
            ValueError: If the value is negative
        """
        if value is not None and value < 0:
            raise ValueError(f"{field_name} cannot be negative")
        return value

    @staticmethod
    def validate_positive_id(value: int, field_name: str = "ID") -> int:
        """
        Validate that an ID is a positive integer.

        Raises:
            ValueError: If the ID is not positive
        """
        if value <= 0:
            raise ValueError(f"{field_name} must be a positive integer")
        return value
