"""
Configuration module for the Pahiram authentication service.

This module uses Pydantic Settings to load and validate environment variables
for the APCIS identity API, the local database, session token signing,
and CORS settings.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the APCIS login API, the session token issuer,
    the database and the HTTP server is defined here.
    """

    # =========================================================================
    # Application
    # =========================================================================

    APP_NAME: str = Field(
        default="pahiram-auth",
        description="Service name reported by /health and in logs",
    )

    APP_ENV: str = Field(
        default="development",
        description="Deployment environment (development, staging, production)",
    )

    APP_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the HTTP server",
    )

    APP_PORT: int = Field(
        default=8000,
        description="Port to bind the HTTP server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # APCIS Identity API
    # =========================================================================

    APCIS_LOGIN_URL: str = Field(
        default="http://167.172.74.157/api/login",
        description="APCIS login endpoint receiving the user's credentials",
        min_length=1,
    )

    APCIS_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for the single APCIS login attempt",
        gt=0,
        le=60,
    )

    APCIS_EXPIRES_AT_FORMAT: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="strptime format of apcis_token.expires_at",
    )

    APCIS_TIMEZONE: str = Field(
        default="UTC",
        description="Timezone in which APCIS writes expires_at",
    )

    # =========================================================================
    # Session Token Configuration
    # =========================================================================

    SESSION_JWT_SECRET: str = Field(
        ...,
        description="Secret key for signing session tokens (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_JWT_ALGORITHM: str = Field(
        default="HS256",
        description="JWT signing algorithm (HS256, HS384, or HS512)",
    )

    SESSION_JWT_ISSUER: str = Field(
        default="pahiram",
        description="Value of the iss claim of issued session tokens",
    )

    SESSION_TOKEN_NAME: str = Field(
        default="Pahiram-Token",
        description="Name recorded on every issued session token row",
    )

    # =========================================================================
    # Database
    # =========================================================================

    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./pahiram.db",
        description="SQLAlchemy async database URL",
    )

    DATABASE_ECHO: bool = Field(
        default=False,
        description="Echo SQL statements to the log",
    )

    # =========================================================================
    # New User Defaults
    # =========================================================================

    DEFAULT_USER_ROLE: str = Field(
        default="BORROWER",
        description="Role given to users on their first login",
    )

    # =========================================================================
    # CORS Configuration
    # =========================================================================

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    @property
    def apcis_zone(self) -> ZoneInfo:
        return ZoneInfo(self.APCIS_TIMEZONE)

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("SESSION_JWT_ALGORITHM")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """
        Validate JWT algorithm is one of the supported HMAC algorithms.

        Raises:
            ValueError: If algorithm is not supported
        """
        allowed_algorithms = ["HS256", "HS384", "HS512"]

        if v not in allowed_algorithms:
            raise ValueError(
                f"JWT algorithm must be one of {allowed_algorithms}, got: {v}"
            )

        return v

    @field_validator("APCIS_TIMEZONE")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    Called during application startup; errors are logged, not raised,
    so that a misconfigured development box still boots.

    Returns:
        Dictionary with validation status and any warnings.
    """
    errors = []
    warnings = []

    if settings.APP_ENV == "production":
        if settings.DATABASE_URL.startswith("sqlite"):
            warnings.append("DATABASE_URL points to SQLite in production")
        if settings.APCIS_LOGIN_URL.startswith("http://"):
            warnings.append("APCIS_LOGIN_URL is not using HTTPS; credentials travel in clear text")
        if not settings.allowed_origins_list:
            warnings.append("ALLOWED_ORIGINS is empty; browsers will be unable to call the API")

    if len(set(settings.SESSION_JWT_SECRET)) < 8:
        errors.append("SESSION_JWT_SECRET has too little entropy")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "apcis_login_url": settings.APCIS_LOGIN_URL,
        "apcis_timeout_seconds": settings.APCIS_TIMEOUT_SECONDS,
    }
