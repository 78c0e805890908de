"""
Application Configuration Settings
"""

from pydantic_settings import BaseSettings
from typing import List
import os


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Approval Chain Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite:///./approvals.db"
    DATABASE_ECHO: bool = False

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8000"  # Comma-separated string

    @property
    def cors_origins_list(self) -> List[str]:
        """Convert comma-separated string to list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    # Policy thresholds (percent over the policy limit)
    # Above this a violation is flagged for special approval at submission
    SUBMISSION_EXPLANATION_THRESHOLD: float = 15.0
    # Above this an extra approval level is appended to the chain
    ESCALATION_THRESHOLD: float = 30.0
    # Escalation only happens while the deciding level is below this
    ESCALATION_LEVEL_CAP: int = 3

    # Approval routing
    ORG_ADMIN_FANOUT: bool = False
    REQUIRE_APPROVAL_CHAIN: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True


# Create settings instance
settings = Settings()


os.makedirs("logs", exist_ok=True)
