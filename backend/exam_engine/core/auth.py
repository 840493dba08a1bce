"""
FastAPI authentication dependency.

Resolves the bearer token to a :class:`User`. A missing, invalid or expired
token, or one naming an unknown user, is refused with ``UNAUTHORIZED`` in the
standard failure envelope.
"""
import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from exam_engine.models import User, get_db
from .error_responses import ErrorCode, raise_engine_error
from .security import decode_token, verify_token_type

logger = logging.getLogger(__name__)

# auto_error=False so a missing header reaches us and gets the engine envelope
security = HTTPBearer(auto_error=False)


def _user_id_from_token(token: str) -> int:
    """
    Decode and validate an access token, returning the user_id claim.

    Raises:
        ExamSessionError: UNAUTHORIZED if the token is invalid, has the wrong
            type, or carries no usable user_id
    """
    payload = decode_token(token)
    if payload is None or not verify_token_type(payload, "access"):
        raise_engine_error(ErrorCode.UNAUTHORIZED)

    user_id = payload.get("user_id")
    try:
        return int(user_id)
    except (TypeError, ValueError):
        raise_engine_error(ErrorCode.UNAUTHORIZED)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Get the authenticated user for the request.

    Args:
        credentials: Bearer credentials from the Authorization header
        db: Database session

    Returns:
        The authenticated User

    Raises:
        ExamSessionError: UNAUTHORIZED when there is no valid identity
    """
    if credentials is None:
        raise_engine_error(ErrorCode.UNAUTHORIZED)

    user_id = _user_id_from_token(credentials.credentials)
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        logger.warning(f"Valid token for unknown user {user_id}")
        raise_engine_error(ErrorCode.UNAUTHORIZED)
    return user
