# stepflow/core/config.py
import logging
from typing import Optional
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings"""
    APP_NAME: str = "stepflow"
    DEBUG: bool = False

    # Identity provider (Supabase / GoTrue)
    SUPABASE_URL: Optional[str] = Field(default=None)
    SUPABASE_ANON_KEY: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("SUPABASE_ANON_KEY", "SUPABASE_KEY")
    )
    PROVIDER_TIMEOUT_SECONDS: float = 10.0

    # Profile store
    REDIS_URL: Optional[str] = Field(default=None)
    PROFILE_KEY_PREFIX: str = "profile"

    # HTTP API
    STEPFLOW_API_KEY: Optional[str] = Field(default=None)
    FLOW_TOKEN_TTL_MINUTES: int = 30

    # Flow behaviour
    RESEND_COOLDOWN_SECONDS: int = 60
    VERIFICATION_CODE_LENGTH: int = 6
    ONBOARDING_FADE_OUT_MS: int = 150
    ONBOARDING_FADE_IN_MS: int = 200
    AUTH_TRANSITION_MS: int = 200

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "populate_by_name": True,
    }


# Settings singleton
settings = Settings()


def validate_required_settings() -> bool:
    """Check that the external collaborators are configured"""
    missing = []

    if not settings.SUPABASE_URL:
        missing.append("SUPABASE_URL")

    if not settings.SUPABASE_ANON_KEY:
        missing.append("SUPABASE_ANON_KEY/SUPABASE_KEY")

    if not settings.REDIS_URL:
        missing.append("REDIS_URL")

    if missing:
        logger.warning(f"Missing environment variables: {', '.join(missing)}")
        logger.warning("Auth flows or profile hand-off may not be available.")
        return False

    return True
