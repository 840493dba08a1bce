"""
Exam session endpoints.

Thin HTTP layer over the engine: every handler resolves the user, calls one
engine operation and wraps its result in the success envelope. Refusals
raised as ExamSessionError are turned into the failure envelope by the
application's exception handler.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from exam_engine.core import answer_intake, eligibility, results, session_lifecycle
from exam_engine.core import violations
from exam_engine.core.auth import get_current_user
from exam_engine.models import User, get_db
from exam_engine.schemas.common import EngineResponse
from exam_engine.schemas.exam_sessions import (
    AbandonResponse,
    AccessCheckResponse,
    CompleteResponse,
    InstructionsResponse,
    QuestionView,
    RecordViolationRequest,
    ResultsResponse,
    SessionStateResponse,
    StartSessionRequest,
    StartSessionResponse,
    SubmitAnswerRequest,
    SubmitAnswerResponse,
    TimeSyncResponse,
    ViolationResponse,
)

router = APIRouter()


# =============================================================================
# Exams
# =============================================================================


@router.get(
    "/exams/active-session",
    response_model=EngineResponse[Optional[SessionStateResponse]],
)
def get_active_session(
    exam_id: Optional[int] = Query(None, ge=1, description="Limit to one exam"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Get the current user's in-progress session, if any.

    Returns ``data: null`` when there is none. A session found past its
    deadline is expired and not returned.
    """
    state = session_lifecycle.get_active_session(db, current_user, exam_id)
    return EngineResponse(data=state)


@router.get(
    "/exams/{exam_id}/access",
    response_model=EngineResponse[AccessCheckResponse],
)
def check_access(
    exam_id: int = Path(..., ge=1),
    invitation_token: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Check whether the current user may start the exam.

    Read-only: inspecting access never consumes an invitation.
    """
    decision = eligibility.check_access(db, current_user, exam_id, invitation_token)
    return EngineResponse(data=decision.to_response())


@router.get(
    "/exams/{exam_id}/instructions",
    response_model=EngineResponse[InstructionsResponse],
)
def get_instructions(
    exam_id: int = Path(..., ge=1),
    invitation_token: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get the pre-exam instruction sheet."""
    instructions = eligibility.get_instructions(
        db, current_user, exam_id, invitation_token
    )
    return EngineResponse(data=instructions)


@router.post(
    "/exams/{exam_id}/sessions",
    response_model=EngineResponse[StartSessionResponse],
)
def start_session(
    request: StartSessionRequest,
    exam_id: int = Path(..., ge=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Start a new exam session.

    Eligibility is checked again here. Practice and test exams need a
    ``config``; other categories use the exam's own settings. Only one
    session may be active per user.

    Args:
        request: Invitation token and optional session configuration
        exam_id: Exam to attempt
        current_user: Current authenticated user
        db: Database session

    Returns:
        The new session with its authoritative deadline
    """
    started = session_lifecycle.start_session(
        db,
        current_user,
        exam_id,
        invitation_token=request.invitation_token,
        config=request.config,
    )
    return EngineResponse(data=started)


# =============================================================================
# Sessions
# =============================================================================


@router.get(
    "/sessions/{session_id}",
    response_model=EngineResponse[SessionStateResponse],
)
def resume_session(
    session_id: int = Path(..., ge=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Resume an active session with its recomputed remaining time."""
    state = session_lifecycle.resume_session(db, current_user, session_id)
    return EngineResponse(data=state)


@router.get(
    "/sessions/{session_id}/questions/{index}",
    response_model=EngineResponse[QuestionView],
)
def get_question(
    session_id: int = Path(..., ge=1),
    index: int = Path(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get the question at ``index`` of the session's order, without answers."""
    question = session_lifecycle.get_question(db, current_user, session_id, index)
    return EngineResponse(data=question)


@router.post(
    "/sessions/{session_id}/answers",
    response_model=EngineResponse[SubmitAnswerResponse],
)
def submit_answer(
    request: SubmitAnswerRequest,
    session_id: int = Path(..., ge=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Submit the answer to one question.

    Each question can be answered once; answers cannot be changed.
    """
    submitted = answer_intake.submit_answer(db, current_user, session_id, request)
    return EngineResponse(data=submitted)


@router.post(
    "/sessions/{session_id}/violations",
    response_model=EngineResponse[ViolationResponse],
)
def record_violation(
    request: RecordViolationRequest,
    session_id: int = Path(..., ge=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Report a proctoring event. Reaching the limit completes the session."""
    outcome = violations.record_violation(db, current_user, session_id, request)
    return EngineResponse(data=outcome)


@router.get(
    "/sessions/{session_id}/time",
    response_model=EngineResponse[TimeSyncResponse],
)
def sync_server_time(
    session_id: int = Path(..., ge=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get the server clock and remaining time for countdown correction."""
    snapshot = session_lifecycle.sync_server_time(db, current_user, session_id)
    return EngineResponse(data=snapshot)


@router.post(
    "/sessions/{session_id}/abandon",
    response_model=EngineResponse[AbandonResponse],
)
def abandon_session(
    session_id: int = Path(..., ge=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Abandon an active session. Abandoned sessions are not scored."""
    abandoned = session_lifecycle.abandon_session(db, current_user, session_id)
    return EngineResponse(data=abandoned)


@router.post(
    "/sessions/{session_id}/complete",
    response_model=EngineResponse[CompleteResponse],
)
def complete_session(
    session_id: int = Path(..., ge=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Complete a session and compute its score.

    Repeating the call returns the stored result with ``already_completed``.
    """
    completed = session_lifecycle.complete_session(db, current_user, session_id)
    return EngineResponse(data=completed)


@router.get(
    "/sessions/{session_id}/results",
    response_model=EngineResponse[ResultsResponse],
)
def get_results(
    session_id: int = Path(..., ge=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get the results of a completed session."""
    compiled = results.get_results(db, current_user, session_id)
    return EngineResponse(data=compiled)
