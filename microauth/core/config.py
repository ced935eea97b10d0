"""
Centralized configuration management.

Follows Layer 5 rules:
- All secrets (DB URLs, JWT keys, client secrets) MUST come from environment
  variables or a secure secret store (never hardcoded)
- Centralize configuration in this module
- Do not spread os.getenv calls all over the codebase
- Do not log secrets or environment values
"""
from __future__ import annotations
from typing import Literal
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    APP_NAME: str = Field(default="microauth", description="Service name used in logs")
    APP_ENV: str = Field(default="development", description="Deployment environment")

    # --- Database ---
    DATABASE_URL: str | None = Field(default=None, description="Full SQLAlchemy URL; overrides PG_*")
    PG_HOST: str = Field(default="localhost", description="PostgreSQL host")
    PG_PORT: int = Field(default=5432, description="PostgreSQL port")
    PG_DB: str = Field(default="microauth", description="PostgreSQL database name")
    PG_USER: str = Field(default="postgres", description="PostgreSQL user")
    PG_PASSWORD: str = Field(default="", description="PostgreSQL password")
    PG_SSLMODE: str = Field(default="disable", description="PostgreSQL SSL mode (require/disable)")
    DB_ECHO: bool = Field(default=False, description="Echo SQL statements")
    AUTO_CREATE_TABLES: bool = Field(default=True, description="Create tables on startup")

    # --- JWT ---
    JWT_SECRET: str = Field(..., description="JWT signing secret key")
    JWT_ALGORITHM: Literal["HS256", "HS384", "HS512"] = Field(default="HS256", description="HMAC algorithm")
    JWT_EXP_MIN: int = Field(default=1440, ge=0, description="JWT expiration in minutes")

    # --- OAuth2 ---
    OAUTH_ACCESS_TOKEN_TTL_SEC: int = Field(default=3600, ge=0, description="Opaque access token lifetime")
    OAUTH_REFRESH_TOKEN_TTL_SEC: int = Field(default=30 * 24 * 3600, ge=0, description="Refresh token lifetime")

    # --- Passwords ---
    BCRYPT_ROUNDS: int = Field(default=12, ge=4, le=31, description="bcrypt cost factor")

    # --- Logging / HTTP ---
    LOG_LEVEL: str = Field(default="INFO", description="Root log level for the service logger")
    CORS_ORIGINS: str = Field(default="*", description="CORS allowed origins (comma-separated)")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        """SQLAlchemy URL, preferring DATABASE_URL over the discrete PG_* values."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.PG_USER}:{self.PG_PASSWORD}"
            f"@{self.PG_HOST}:{self.PG_PORT}/{self.PG_DB}?sslmode={self.PG_SSLMODE}"
        )


settings = Settings()
