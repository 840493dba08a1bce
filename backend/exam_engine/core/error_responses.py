"""
Engine error codes, user-facing messages and the failure envelope.

Every engine operation either returns its data or raises
:class:`ExamSessionError`. The API layer turns that exception into the
tagged failure envelope::

    {"success": false, "error": {"code": "SESSION_EXPIRED", "message": "..."}}

so callers always get a machine-readable code instead of a bare HTTP error.

Error Message Format Guidelines:
- Use sentence case (capitalize first letter only)
- End with a period for complete sentences
- Never reveal correct answers or other users' data in a message

Usage:
    from exam_engine.core.error_responses import ErrorCode, raise_engine_error

    if session.status != SessionStatus.ACTIVE:
        raise_engine_error(ErrorCode.SESSION_NOT_ACTIVE)

    raise_engine_error(
        ErrorCode.SESSION_NOT_ACTIVE,
        ErrorMessages.session_in_status(session.status.value),
        status=session.status.value,
    )
"""

import enum
from typing import Any, Dict, NoReturn, Optional

from fastapi import status


class ErrorCode(str, enum.Enum):
    """Machine-readable failure codes returned to the presentation layer."""

    # Authorization
    UNAUTHORIZED = "UNAUTHORIZED"
    EXAM_PRIVATE = "EXAM_PRIVATE"
    INVITATION_REQUIRED = "INVITATION_REQUIRED"
    INVALID_INVITATION = "INVALID_INVITATION"
    INVITATION_EXPIRED = "INVITATION_EXPIRED"
    INVITATION_USED = "INVITATION_USED"
    INVALID_USER = "INVALID_USER"

    # Lookup
    EXAM_NOT_FOUND = "EXAM_NOT_FOUND"
    EXAM_UNAVAILABLE = "EXAM_UNAVAILABLE"
    EXAM_HAS_NO_QUESTIONS = "EXAM_HAS_NO_QUESTIONS"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    QUESTION_NOT_FOUND = "QUESTION_NOT_FOUND"

    # Publication window / expiry
    EXAM_NOT_STARTED = "EXAM_NOT_STARTED"
    EXAM_EXPIRED = "EXAM_EXPIRED"
    SESSION_EXPIRED = "SESSION_EXPIRED"

    # State conflicts
    MAX_ATTEMPTS_REACHED = "MAX_ATTEMPTS_REACHED"
    CONCURRENT_SESSION = "CONCURRENT_SESSION"
    SESSION_NOT_ACTIVE = "SESSION_NOT_ACTIVE"
    SESSION_COMPLETED = "SESSION_COMPLETED"
    SESSION_NOT_COMPLETED = "SESSION_NOT_COMPLETED"
    ALREADY_ANSWERED = "ALREADY_ANSWERED"

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIG_REQUIRED = "CONFIG_REQUIRED"
    TIME_LIMIT_REQUIRED = "TIME_LIMIT_REQUIRED"
    INVALID_QUESTION_INDEX = "INVALID_QUESTION_INDEX"
    QUESTION_NOT_IN_SESSION = "QUESTION_NOT_IN_SESSION"
    INVALID_OPTION = "INVALID_OPTION"

    # Infrastructure
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorMessages:
    """Default user-facing message for each error code, plus templates."""

    # ==========================================================================
    # Authorization
    # ==========================================================================
    UNAUTHORIZED = "Please sign in to continue."
    EXAM_PRIVATE = "This exam is private."
    INVITATION_REQUIRED = "An invitation is required to take this exam."
    INVALID_INVITATION = "Invalid invitation."
    INVITATION_EXPIRED = "This invitation has expired."
    INVITATION_USED = "This invitation has already been used."
    INVALID_USER = "This invitation was issued to a different user."

    # ==========================================================================
    # Lookup
    # ==========================================================================
    EXAM_NOT_FOUND = "Exam not found."
    EXAM_UNAVAILABLE = "This exam is not available."
    EXAM_HAS_NO_QUESTIONS = "This exam has no questions."
    SESSION_NOT_FOUND = "Exam session not found."
    QUESTION_NOT_FOUND = "Question not found."

    # ==========================================================================
    # Publication window / expiry
    # ==========================================================================
    EXAM_NOT_STARTED = "This exam has not started yet."
    EXAM_EXPIRED = "This exam has ended."
    SESSION_EXPIRED = "Time is up. This exam session has expired."

    # ==========================================================================
    # State conflicts
    # ==========================================================================
    MAX_ATTEMPTS_REACHED = "You have reached the maximum number of attempts for this exam."
    CONCURRENT_SESSION = (
        "You already have an exam in progress. "
        "Please complete or abandon it before starting a new one."
    )
    SESSION_NOT_ACTIVE = "This exam session is no longer active."
    SESSION_COMPLETED = "This exam session has already been completed."
    SESSION_NOT_COMPLETED = "Results are available once the exam is completed."
    ALREADY_ANSWERED = "This question has already been answered."

    # ==========================================================================
    # Validation
    # ==========================================================================
    VALIDATION_ERROR = "Invalid request."
    CONFIG_REQUIRED = "Please configure the exam before starting."
    TIME_LIMIT_REQUIRED = "A time limit is required for this exam."
    INVALID_QUESTION_INDEX = "Invalid question index."
    QUESTION_NOT_IN_SESSION = "This question is not part of the exam session."
    INVALID_OPTION = "The selected option does not belong to this question."

    # ==========================================================================
    # Infrastructure
    # ==========================================================================
    INTERNAL_ERROR = "Something went wrong. Please try again later."

    # ==========================================================================
    # Templates
    # ==========================================================================
    @staticmethod
    def session_in_status(session_status: str) -> str:
        return f"This exam session is {session_status}."

    @staticmethod
    def question_index_out_of_range(index: int, total: int) -> str:
        return f"Question index {index} is out of range (0-{total - 1})."

    @staticmethod
    def out_of_range(field: str, minimum: int, maximum: int) -> str:
        return f"{field} must be between {minimum} and {maximum}."

    @classmethod
    def default_for(cls, code: ErrorCode) -> str:
        return getattr(cls, code.value, cls.INTERNAL_ERROR)


# HTTP status per error code; anything unlisted is a 400.
ERROR_STATUS_CODES: Dict[ErrorCode, int] = {
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.EXAM_PRIVATE: status.HTTP_403_FORBIDDEN,
    ErrorCode.INVITATION_REQUIRED: status.HTTP_403_FORBIDDEN,
    ErrorCode.INVALID_INVITATION: status.HTTP_403_FORBIDDEN,
    ErrorCode.INVITATION_EXPIRED: status.HTTP_403_FORBIDDEN,
    ErrorCode.INVITATION_USED: status.HTTP_403_FORBIDDEN,
    ErrorCode.INVALID_USER: status.HTTP_403_FORBIDDEN,
    ErrorCode.EXAM_NOT_STARTED: status.HTTP_403_FORBIDDEN,
    ErrorCode.EXAM_EXPIRED: status.HTTP_403_FORBIDDEN,
    ErrorCode.EXAM_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.EXAM_UNAVAILABLE: status.HTTP_404_NOT_FOUND,
    ErrorCode.SESSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.QUESTION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.EXAM_HAS_NO_QUESTIONS: status.HTTP_409_CONFLICT,
    ErrorCode.MAX_ATTEMPTS_REACHED: status.HTTP_409_CONFLICT,
    ErrorCode.CONCURRENT_SESSION: status.HTTP_409_CONFLICT,
    ErrorCode.SESSION_NOT_ACTIVE: status.HTTP_409_CONFLICT,
    ErrorCode.SESSION_COMPLETED: status.HTTP_409_CONFLICT,
    ErrorCode.SESSION_NOT_COMPLETED: status.HTTP_409_CONFLICT,
    ErrorCode.ALREADY_ANSWERED: status.HTTP_409_CONFLICT,
    ErrorCode.SESSION_EXPIRED: status.HTTP_410_GONE,
    ErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ExamSessionError(Exception):
    """Raised by engine operations to refuse a request with a specific code.

    Attributes:
        code: The machine-readable error code
        message: User-facing message
        details: Optional extra payload for the presentation layer
            (e.g. the session's current status so it can redirect)
    """

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message or ErrorMessages.default_for(code)
        self.details = details or {}
        super().__init__(f"{code.value}: {self.message}")

    @property
    def status_code(self) -> int:
        return ERROR_STATUS_CODES.get(self.code, status.HTTP_400_BAD_REQUEST)

    def to_envelope(self) -> Dict[str, Any]:
        """Build the tagged failure envelope for this error."""
        error: Dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"success": False, "error": error}


def raise_engine_error(
    code: ErrorCode, message: Optional[str] = None, **details: Any
) -> NoReturn:
    """Raise an :class:`ExamSessionError`.

    Args:
        code: Error code to report
        message: Optional override for the default message of ``code``
        **details: Extra fields attached to the failure envelope

    Raises:
        ExamSessionError: Always
    """
    raise ExamSessionError(code, message, details or None)
