"""
Application configuration settings.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Self


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Exam Session Engine"
    APP_VERSION: str = "0.1.0"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API
    API_V1_PREFIX: str = "/v1"

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8080",
    ]

    # Security
    # IMPORTANT: These MUST be set in .env file - no defaults for security
    SECRET_KEY: str = Field(..., description="Application secret key (required)")
    JWT_SECRET_KEY: str = Field(..., description="JWT signing secret key (required)")
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Exam sessions
    EXAM_VIOLATION_LIMIT: int = Field(
        default=10,
        ge=1,
        description="Violations after which a session is force-completed",
    )
    EXAM_MIN_QUESTIONS: int = 1
    EXAM_MAX_QUESTIONS: int = 80
    EXAM_MIN_TIME_LIMIT: int = 1  # minutes
    EXAM_MAX_TIME_LIMIT: int = 600  # minutes
    EXAM_TEXT_ANSWER_MAX_LENGTH: int = 5000

    # At-rest question encryption
    QUESTION_ENCRYPTION_KEY: str = Field(
        default="",
        repr=False,
        description="Passphrase used to derive question decryption keys "
        "(leave empty when question content is stored in plaintext)",
    )

    # Sentry Error Tracking
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking (leave empty to disable)",
    )
    SENTRY_TRACES_SAMPLE_RATE: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry traces sample rate (0.0-1.0, 0.1 = 10% of transactions)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env not defined in Settings
    )

    @model_validator(mode="after")
    def validate_exam_bounds(self) -> Self:
        """Reject inverted question-count or time-limit bounds at startup."""
        if not 1 <= self.EXAM_MIN_QUESTIONS <= self.EXAM_MAX_QUESTIONS:
            raise ValueError(
                f"EXAM_MIN_QUESTIONS ({self.EXAM_MIN_QUESTIONS}) must be >= 1 and "
                f"<= EXAM_MAX_QUESTIONS ({self.EXAM_MAX_QUESTIONS})"
            )
        if not 1 <= self.EXAM_MIN_TIME_LIMIT <= self.EXAM_MAX_TIME_LIMIT:
            raise ValueError(
                f"EXAM_MIN_TIME_LIMIT ({self.EXAM_MIN_TIME_LIMIT}) must be >= 1 and "
                f"<= EXAM_MAX_TIME_LIMIT ({self.EXAM_MAX_TIME_LIMIT})"
            )
        return self


# mypy doesn't understand that pydantic_settings loads required fields from env vars
settings = Settings()  # type: ignore[call-arg]
