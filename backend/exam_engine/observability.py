"""
Error tracking via Sentry.

Sentry is optional: with no ``SENTRY_DSN`` configured every call here is a
no-op. Initialization failures are logged and never stop the application.

Usage:
    from exam_engine.observability import observability

    observability.init()
    observability.capture_error(exc, context={"session_id": 42})
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

from exam_engine.core.config import settings

logger = logging.getLogger(__name__)


def _serialize_context(context: Dict[str, Any]) -> Dict[str, Any]:
    """Convert context values Sentry cannot encode into strings."""
    serialized: Dict[str, Any] = {}
    for key, value in context.items():
        if isinstance(value, datetime):
            serialized[key] = value.isoformat()
        elif isinstance(value, (str, int, float, bool)) or value is None:
            serialized[key] = value
        else:
            serialized[key] = repr(value)
    return serialized


class Observability:
    """Thin wrapper around the Sentry SDK."""

    def __init__(self) -> None:
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def init(self) -> bool:
        """Initialize Sentry from settings.

        Returns:
            True if Sentry was initialized, False if skipped or failed.
        """
        if not settings.SENTRY_DSN:
            logger.debug("Sentry initialization skipped (DSN not configured)")
            return False

        try:
            sentry_sdk.init(
                dsn=settings.SENTRY_DSN,
                environment=settings.ENV,
                release=settings.APP_VERSION,
                traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
                integrations=[
                    LoggingIntegration(
                        level=None,  # Don't capture breadcrumbs from logs
                        event_level=None,  # Don't send log events
                    ),
                ],
                send_default_pii=False,
            )
        except Exception as e:
            logger.warning(f"Failed to initialize Sentry: {e}")
            return False

        self._initialized = True
        logger.info(
            f"Sentry initialized for environment '{settings.ENV}' "
            f"with {settings.SENTRY_TRACES_SAMPLE_RATE * 100:.0f}% trace sampling"
        )
        return True

    def capture_error(
        self,
        exception: BaseException,
        *,
        context: Optional[Dict[str, Any]] = None,
        tags: Optional[Dict[str, str]] = None,
        level: str = "error",
    ) -> Optional[str]:
        """Send an exception to Sentry.

        Returns:
            Event ID if captured, None if Sentry is not initialized.
        """
        if not self._initialized:
            return None

        with sentry_sdk.new_scope() as scope:
            if context:
                scope.set_context("additional", _serialize_context(context))
            for key, value in (tags or {}).items():
                scope.set_tag(key, value)
            scope.level = level
            return sentry_sdk.capture_exception(exception)

    def shutdown(self) -> None:
        """Flush pending events."""
        if self._initialized:
            sentry_sdk.flush(timeout=2.0)


observability = Observability()
