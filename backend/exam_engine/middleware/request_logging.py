"""
Request/response logging middleware for tracking engine API calls.
"""
import logging
import re
import time
import uuid
from typing import Callable, Dict, Optional, Union

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from exam_engine.core.logging_config import request_id_context

logger = logging.getLogger(__name__)

_SESSION_PATH = re.compile(r"/sessions/(\d+)")
_EXAM_PATH = re.compile(r"/exams/(\d+)")

# Liveness probes would otherwise flood the logs
_QUIET_PATHS = ("/health", "/ping")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log incoming requests and outgoing responses.

    Logs:
    - Request method and path
    - Response status code and duration
    - Session or exam id parsed from the path, when present
    - User identifier (token preview from the auth header, if present)

    Every request gets an ``X-Request-ID`` (taken from the request or
    generated) that is echoed on the response and attached to all log lines
    emitted while serving it.
    """

    def __init__(self, app: ASGIApp, log_health_checks: bool = False):
        """
        Initialize request logging middleware.

        Args:
            app: ASGI application
            log_health_checks: Whether to log /health and /ping at INFO
        """
        super().__init__(app)
        self.log_health_checks = log_health_checks

    @staticmethod
    def _path_ids(path: str) -> Dict[str, int]:
        ids: Dict[str, int] = {}
        session_match = _SESSION_PATH.search(path)
        if session_match:
            ids["session_id"] = int(session_match.group(1))
        exam_match = _EXAM_PATH.search(path)
        if exam_match:
            ids["exam_id"] = int(exam_match.group(1))
        return ids

    @staticmethod
    def _user_identifier(request: Request) -> str:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            # Never log the full token
            return f"token:{auth_header[7:17]}..."
        return "anonymous"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process request and log details.

        Args:
            request: Incoming request
            call_next: Next middleware/endpoint in chain

        Returns:
            Response from the endpoint
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_context.set(request_id)

        start_time = time.time()
        method = request.method
        path = str(request.url.path)
        quiet = not self.log_health_checks and path.endswith(_QUIET_PATHS)

        extra_fields: Dict[str, Optional[Union[str, int, float]]] = {
            "method": method,
            "path": path,
            "client_host": request.client.host if request.client else "unknown",
            "user_identifier": self._user_identifier(request),
            **self._path_ids(path),
        }

        if not quiet:
            logger.info("Incoming request", extra=extra_fields)

        response = await call_next(request)

        extra_fields["status_code"] = response.status_code
        extra_fields["duration_ms"] = round((time.time() - start_time) * 1000, 2)
        response.headers["X-Request-ID"] = request_id

        if response.status_code >= 500:
            logger.error("Server error response", extra=extra_fields)
        elif response.status_code >= 400:
            logger.warning("Client error response", extra=extra_fields)
        elif quiet:
            logger.debug("Request completed", extra=extra_fields)
        else:
            logger.info("Request completed", extra=extra_fields)

        return response
