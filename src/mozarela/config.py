"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./database.db"

    # Application
    log_level: str = "INFO"
    environment: str = "development"
    allowed_origin: str | None = None

    # Sessions
    session_ttl_seconds: int = 30 * 24 * 60 * 60
    session_cookie_name: str = "session_token"
    session_sweep_interval_seconds: int = 60 * 60
    cookie_samesite: str = "lax"
    cookie_secure: bool | None = None

    # Rate limits (per client IP)
    rate_limit_max: int = 120
    rate_limit_window_seconds: float = 60
    admin_rate_limit_max: int = 30
    admin_rate_limit_window_seconds: float = 60
    login_rate_limit_max: int = 5
    login_rate_limit_window_seconds: float = 15 * 60

    # AI provider (OpenAI compatible)
    ai_api_key: str | None = None
    ai_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    ai_primary_model: str = "gemini-2.5-flash"
    ai_fallback_model: str = "gemini-2.0-flash"
    ai_timeout_seconds: float = 60.0
    scoring_commentary_timeout_seconds: float = 20.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def secure_cookies(self) -> bool:
        """Explicit COOKIE_SECURE wins, otherwise only in production."""
        if self.cookie_secure is not None:
            return self.cookie_secure
        return self.environment == "production"


settings = Settings()
