"""
API v1 router combining all v1 endpoints.
"""
from fastapi import APIRouter
from exam_engine.api.v1 import health, exam_sessions

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(health.router, tags=["health"])
api_router.include_router(exam_sessions.router, tags=["exam-sessions"])
