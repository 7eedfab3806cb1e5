"""
Application configuration loaded from the environment.

Supported environment files (loaded in order of precedence):
1. .env.{ENVIRONMENT} (e.g., .env.production, .env.test)
2. .env (fallback)

Every tunable of the sync pipeline lives here so the rate limiter, matcher and
orchestrator can be built from one place via their ``from_settings()`` helpers.
"""
import os
import logging
from pathlib import Path
from typing import Literal
from pydantic_settings import BaseSettings
from pydantic import ConfigDict

# Get the project root directory (3 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with environment-specific configuration."""

    # Environment
    ENVIRONMENT: Literal["development", "production", "test"] = "development"

    model_config = ConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Allow extra fields from .env
    )

    # Application
    APP_NAME: str = "RosterSync"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./rostersync.db"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # ESPN endpoints
    ESPN_SITE_API_URL: str = "https://site.api.espn.com/apis/site/v2/sports/football/nfl"
    ESPN_CORE_API_URL: str = "https://sports.core.api.espn.com"
    ESPN_REQUEST_TIMEOUT: float = 30.0
    ESPN_SEASON_TYPE: int = 2  # regular season
    ESPN_ATHLETE_PAGE_LIMIT: int = 20000

    # Outbound rate limiting (sliding window + burst gate)
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_TIME_WINDOW_SECONDS: float = 60.0
    RATE_LIMIT_BURST_ALLOWANCE: int = 10
    RATE_LIMIT_QUEUE_TIMEOUT_MS: int = 5000

    # Player matching
    MATCH_MINIMUM_CONFIDENCE: float = 0.5
    MATCH_AUTO_LINK_CONFIDENCE: float = 0.9
    MATCH_MANUAL_REVIEW_MARGIN: float = 0.1
    MATCH_MAX_ALTERNATES: int = 5
    MATCH_BULK_DELAY_MS: int = 10
    MATCH_ENABLE_PHONETIC: bool = True
    MATCH_ENABLE_NAME_VARIATIONS: bool = True
    MATCH_VERBOSE_LOGGING: bool = False
    MATCH_NAME_WEIGHT: float = 0.7
    MATCH_TEAM_WEIGHT: float = 0.2
    MATCH_POSITION_WEIGHT: float = 0.1

    # Sync runs
    SYNC_BATCH_SIZE: int = 100
    SYNC_RETRY_DELAY_MS: int = 1000
    SYNC_SKIP_INVALID_RECORDS: bool = True
    SYNC_TIMEOUT_MINUTES: int = 60

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == "production"

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT == "development"

    def validate_matching_weights(self) -> list[str]:
        """
        Check the matcher configuration for inconsistent values.

        Returns:
            List of human-readable problems (empty if the configuration is sane)
        """
        problems = []
        total = self.MATCH_NAME_WEIGHT + self.MATCH_TEAM_WEIGHT + self.MATCH_POSITION_WEIGHT
        if abs(total - 1.0) > 1e-6:
            problems.append(f"Match weights sum to {total:.3f}, expected 1.0")
        if not 0.0 <= self.MATCH_MINIMUM_CONFIDENCE <= self.MATCH_AUTO_LINK_CONFIDENCE <= 1.0:
            problems.append("MATCH_MINIMUM_CONFIDENCE must not exceed MATCH_AUTO_LINK_CONFIDENCE")
        return problems


def _load_env_file() -> Path:
    """
    Pick the environment file based on the ENVIRONMENT variable.

    Loads in order of precedence:
    1. .env.{ENVIRONMENT}
    2. .env (fallback)
    """
    environment = os.getenv("ENVIRONMENT", "development")

    env_file = PROJECT_ROOT / f".env.{environment}"
    if env_file.exists():
        logger.info(f"Loading environment from {env_file.name}")
        return env_file

    return PROJECT_ROOT / ".env"


settings = Settings(_env_file=str(_load_env_file()))

for _problem in settings.validate_matching_weights():
    logger.warning(_problem)
