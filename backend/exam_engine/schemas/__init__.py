"""
Pydantic schemas for request/response validation.
"""
from .common import EngineResponse, ErrorBody, ErrorResponse
from .exam_sessions import (
    SessionConfig,
    StartSessionRequest,
    SubmitAnswerRequest,
    RecordViolationRequest,
    AccessCheckResponse,
    InstructionsResponse,
    StartSessionResponse,
    SessionStateResponse,
    QuestionView,
    SubmitAnswerResponse,
    ViolationResponse,
    TimeSyncResponse,
    AbandonResponse,
    CompleteResponse,
    ResultsResponse,
)

__all__ = [
    "EngineResponse",
    "ErrorBody",
    "ErrorResponse",
    "SessionConfig",
    "StartSessionRequest",
    "SubmitAnswerRequest",
    "RecordViolationRequest",
    "AccessCheckResponse",
    "InstructionsResponse",
    "StartSessionResponse",
    "SessionStateResponse",
    "QuestionView",
    "SubmitAnswerResponse",
    "ViolationResponse",
    "TimeSyncResponse",
    "AbandonResponse",
    "CompleteResponse",
    "ResultsResponse",
]
