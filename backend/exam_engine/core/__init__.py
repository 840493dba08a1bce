"""
Core module for configuration and the session engine.

Note: engine modules are not imported at package level to avoid circular
imports with exam_engine.models and exam_engine.schemas.
Import them directly: from exam_engine.core.session_lifecycle import ...
"""
from .config import settings

__all__ = ["settings"]
