"""
Graceful failure utilities.

For best-effort work that must never block an engine operation, such as
the leaderboard position attached to competitive results. The pattern is:
1. Attempt the operation
2. Log any exception with context and report it to Sentry
3. Continue without raising

This is distinct from ``db_error_handling.py``, which handles failures that
must abort and roll back the current transaction.

Usage:
    from exam_engine.core.graceful_failure import graceful_failure

    with graceful_failure("compute leaderboard position", logger):
        ranking = leaderboard_position(db, session)
"""

import logging
from contextlib import contextmanager
from typing import Any, Generator, Optional

from exam_engine.observability import observability


@contextmanager
def graceful_failure(
    operation_name: str,
    logger: logging.Logger,
    *,
    log_level: int = logging.WARNING,
    exc_info: bool = False,
    context: Optional[dict[str, Any]] = None,
) -> Generator[None, None, None]:
    """Context manager for non-critical operations that should not block execution.

    Unlike ``handle_db_error``, this does NOT roll back the database session
    or raise.

    Args:
        operation_name: Human-readable name of the operation for logging.
        logger: The logger instance to use for logging errors.
        log_level: Logging level for error messages. Defaults to WARNING.
        exc_info: Whether to include exception traceback in log.
        context: Optional extra context included in the log message
            (e.g., {"session_id": 123}).

    Yields:
        None - the context manager is used for its side effects only.
    """
    try:
        yield
    except Exception as e:
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            message = f"Failed to {operation_name} ({context_str}): {e}"
        else:
            message = f"Failed to {operation_name}: {e}"

        logger.log(log_level, message, exc_info=exc_info)
        observability.capture_error(
            e, context=context, tags={"error_type": "GracefulFailure"}, level="warning"
        )
