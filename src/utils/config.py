"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.

Cache-specific settings (Redis target, TTL classes, warming cadence) live in
src/cache/config.py.
"""

from typing import List, Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Jira (Required for live data)
    JIRA_BASE_URL: str = "https://jira.example.com"
    JIRA_USERNAME: Optional[str] = None
    JIRA_PASSWORD: Optional[str] = None
    JIRA_API_VERSION: str = "2"
    JIRA_VERIFY_SSL: bool = True

    # Reporting scope
    JIRA_PROJECT: str = "SFAP"
    JIRA_BUG_AREAS_PROJECT: str = "SFA Platform"
    JIRA_AUTOMATION_REPORTER: str = "bugs-bunny"
    BUG_AREAS_VERSION: str = "12.8"
    # Comma-separated Jira user names that triage automation bugs
    TRIAGERS: str = ""

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "*"

    # Timeouts
    API_TIMEOUT: int = 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase

    @property
    def triagers(self) -> List[str]:
        """Triager user names as a list."""
        return [name.strip() for name in self.TRIAGERS.split(",") if name.strip()]

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
