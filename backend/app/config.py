"""Process-wide settings for the orchestration core."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings read from environment variables (or a local .env file)."""

    # Application
    APP_NAME: str = "Orchestration Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # System configuration file (agents, tools, integrations, automations)
    SYSTEM_CONFIG_PATH: Optional[str] = None
    STRICT_CONFIG: bool = False

    # Multi-tenancy
    DEFAULT_PLAN: str = "starter"  # free, starter, professional, enterprise
    EMAIL_UNIQUENESS_SCOPE: str = "global"  # global or tenant
    TRIAL_DAYS: int = 14
    API_KEY_DEFAULT_PERMISSIONS: list[str] = ["read"]

    # Automation engine
    EXECUTION_HISTORY_LIMIT: int = 100
    SERIALIZE_AUTOMATION_RUNS: bool = False

    # Outbound HTTP (integrations, webhook executor)
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    def validate_settings(self) -> None:
        """Validate cross-field constraints.

        Raises:
            RuntimeError: If an enumerated setting has an unsupported value
        """
        if self.EMAIL_UNIQUENESS_SCOPE not in ("global", "tenant"):
            raise RuntimeError(
                f"EMAIL_UNIQUENESS_SCOPE must be 'global' or 'tenant', "
                f"got '{self.EMAIL_UNIQUENESS_SCOPE}'"
            )
        if self.DEFAULT_PLAN not in ("free", "starter", "professional", "enterprise"):
            raise RuntimeError(f"Unknown DEFAULT_PLAN: {self.DEFAULT_PLAN}")

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Settings singleton; the environment is read on first call only."""
    return Settings()
