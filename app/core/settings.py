"""
Core settings and environment variables for Civic Pulse.
Uses pydantic-settings for type-safe environment variable loading.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Create a .env file in the root directory to configure these.
    """

    # Application
    APP_NAME: str = "Civic Pulse"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - Frontend URLs allowed to access this API (comma separated)
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:3001,http://localhost:19006"

    # Firebase/Firestore
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None  # Path to service account JSON

    # In-memory store for local development and tests (no Firebase credentials needed)
    USE_MOCK_DB: bool = False

    # Geocoding (optional address enrichment)
    # - GEOCODING_PROVIDER: "nominatim" (default, no API key), "google" or "none"
    # - GOOGLE_MAPS_API_KEY: only used when provider is "google"
    GEOCODING_PROVIDER: str = "nominatim"
    GOOGLE_MAPS_API_KEY: Optional[str] = None

    # Write contention: bounded retries before surfacing ConflictError
    VOTE_MAX_ATTEMPTS: int = 3
    STATUS_MAX_ATTEMPTS: int = 3
    LINK_MAX_ATTEMPTS: int = 3
    USER_UPDATE_MAX_ATTEMPTS: int = 5
    REPORT_NUMBER_MAX_ATTEMPTS: int = 5

    # Trust score and gamification
    INITIAL_TRUST_SCORE: int = 100
    REPORT_SUBMISSION_POINTS: int = 10
    STREAK_WINDOW_HOURS: float = 24.0

    # SLA defaults (hours) used when a report has no assigned department
    DEFAULT_RESPONSE_HOURS: float = 24.0
    DEFAULT_RESOLUTION_HOURS: float = 168.0
    DEFAULT_ESCALATION_HOURS: float = 72.0

    # Escalation sweep
    ESCALATION_SCHEDULER_ENABLED: bool = False
    ESCALATION_SWEEP_INTERVAL_SECONDS: int = 900
    ESCALATION_SWEEP_BATCH_SIZE: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"  # Allow extra env vars to prevent crashes

    @property
    def cors_origins_list(self):
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


# Global settings instance
settings = Settings()
