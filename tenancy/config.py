from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via .env file or environment variables.
    """

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # JWT signing key for bearer tokens and the session cookie
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_TTL_SECONDS: int = 3600

    # Session cookie
    SESSION_COOKIE_NAME: str = "AuthToken"
    SESSION_COOKIE_SECURE: bool = False
    SESSION_COOKIE_MAX_AGE: int = 12 * 24 * 60 * 60  # 12 days

    # Redirect targets used by the session gate
    LOGIN_PATH: str = "/login"
    UNAUTHORIZED_PATH: str = "/unauthorized"
    AUTHENTICATED_HOME_PATH: str = "/dashboard"

    # Application
    APP_NAME: str = "Tenancy API"
    APP_VERSION: str = "0.1.0"
    APP_URL: str = "http://localhost:3000"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Membership lifecycle
    INVITATION_TTL_DAYS: int = 7
    DEFAULT_MAX_USERS: int = 50
    SOFT_DELETE_RETENTION_DAYS: int = 30

    # Rate limiting
    LOGIN_MAX_ATTEMPTS: int = 5
    LOGIN_WINDOW_SECONDS: int = 15 * 60
    API_USER_LIMIT_PER_MINUTE: int = 100
    API_TENANT_LIMIT_PER_MINUTE: int = 1000
    RATE_LIMIT_RECORD_TTL_SECONDS: int = 120
    CLEANUP_BATCH_SIZE: int = 500

    # CORS
    CORS_ORIGINS: str = ""
    CORS_ALLOW_CREDENTIALS: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS from comma-separated string"""
        if not self.CORS_ORIGINS:
            return []
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


# Global settings instance
settings = Settings()
