"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.04.00"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./messenger.db"

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 8

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Event backplane. Empty or "memory://" runs single-replica.
    REDIS_URL: str = ""
    REDIS_MAX_CONNECTIONS: int = 20

    # Rate Limiting (requests per minute)
    RATE_LIMIT_API: int = 120
    RATE_LIMIT_BROADCAST: int = 10

    # AI provider (openai | gemini). Empty disables model calls.
    AI_PROVIDER: str = ""
    AI_API_KEY: str = ""
    AI_MODEL: str = ""
    AI_IMAGE_MODEL: str = ""
    AI_TIMEOUT_SECONDS: float = 60.0
    COMPLIANCE_AI_MODEL: str = ""

    # Message enrichment
    MESSAGE_ENRICHMENT_INLINE: bool = True  # False defers to explicit regenerate
    ENRICHMENT_HISTORY_LIMIT: int = 10
    DEFAULT_MANAGER_LOCALE: str = "ja"
    DEFAULT_WORKER_LOCALE: str = "vi"
    PUBLIC_BASE_URL: str = "http://localhost:3000"  # Resolves relative image refs
    TRANSLATION_CACHE_SIZE: int = 500
    TRANSLATION_CACHE_TTL_SECONDS: int = 3600

    # Conversation analysis
    HEALTH_CONSULTATION_ENABLED: bool = False  # Scripted flow on member health concerns
    SEGMENTS_REGENERATE_ON_APPEND: bool = False
    SEGMENT_HISTORY_LIMIT: int = 200

    # Broadcast
    BROADCAST_MAX_WORKERS: int = 8
    BROADCAST_SUBJECT: str = "Broadcast"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def ai_configured(self) -> bool:
        return bool(self.AI_PROVIDER and self.AI_API_KEY)


settings = Settings()
