"""
Customer Core - Configuration

Settings come from environment variables (and backend/.env) through
pydantic-settings. Production startup refuses to proceed without a real
database, a valid encryption key and a locked-down CORS policy.
"""

import logging
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings

from utils.encryption import FieldCipher, InvalidKeyError

logger = logging.getLogger(__name__)

# Only ever used outside production when ENCRYPTION_KEY is unset
DEV_ENCRYPTION_KEY = "dev-only-key-0123456789abcdefghi"

# Front-end dev servers allowed outside production
LOCAL_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
)

ASYNC_DRIVER_PREFIX = "postgresql+asyncpg://"


class Settings(BaseSettings):
    """Service settings; every field maps to an environment variable of the same name."""

    # ==================== RUNTIME ====================
    ENVIRONMENT: str = Field(default="development", description="development, test, staging or production")
    DEBUG: bool = Field(default=False, description="Expose API docs and verbose request logs")
    SERVICE_NAME: str = Field(default="customer-core", description="Name used in logs and error reports")

    # ==================== POSTGRES ====================
    DATABASE_URL: str = Field(default="", description="Full connection URL; wins over POSTGRES_*")
    POSTGRES_HOST: str = Field(default="")
    POSTGRES_PORT: int = Field(default=5432)
    POSTGRES_DB: str = Field(default="customers")
    POSTGRES_USER: str = Field(default="")
    POSTGRES_PASSWORD: str = Field(default="")
    POSTGRES_SSLMODE: str = Field(default="prefer", description="asyncpg ssl mode: disable, prefer, require")
    DB_POOL_SIZE: int = Field(default=5)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_RECYCLE_SECONDS: int = Field(default=1800)
    DB_STATEMENT_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Upper bound for a single statement outside a transaction (0 disables)"
    )

    # ==================== FIELD ENCRYPTION ====================
    ENCRYPTION_KEY: str = Field(
        default="",
        description="AES-256 key: 32 raw characters or base64 of 32 bytes (required in production)"
    )

    # ==================== HTTP ====================
    CORS_ORIGINS: str = Field(default="", description="Comma-separated browser origins")
    REQUEST_TIMEOUT_SECONDS: float = Field(default=30.0, description="Upper bound for one HTTP request (0 disables)")
    API_TITLE: str = Field(default="Customer Core API")
    API_VERSION: str = Field(default="1.0.0")

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(default="", description="Error reporting is off when empty")
    LOG_LEVEL: str = Field(default="INFO")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        return self.DEBUG or self.is_development

    @property
    def cors_origins_list(self) -> List[str]:
        """Configured origins, plus the local dev servers outside production. "*" is never passed through."""
        origins = {
            origin.strip() for origin in self.CORS_ORIGINS.split(",")
            if origin.strip() and origin.strip() != "*"
        }
        if not self.is_production:
            origins.update(LOCAL_ORIGINS)
        return sorted(origins)

    def validate_production_config(self) -> List[str]:
        """
        Check the settings a production deployment depends on.

        The database and key checks run in every environment; the CORS,
        localhost and DEBUG checks only apply to production.

        Returns:
            Human-readable problems, empty when the configuration is usable
        """
        problems = []

        if not self.DATABASE_URL and not (self.POSTGRES_HOST and self.POSTGRES_USER):
            problems.append("DATABASE_URL is required")

        if not self.ENCRYPTION_KEY:
            problems.append("ENCRYPTION_KEY is required")
        elif self.ENCRYPTION_KEY == DEV_ENCRYPTION_KEY:
            problems.append("ENCRYPTION_KEY must be changed from the development key")
        else:
            try:
                FieldCipher.from_setting(self.ENCRYPTION_KEY)
            except InvalidKeyError as e:
                problems.append(f"ENCRYPTION_KEY is invalid: {e}")

        if not self.is_production:
            return problems

        if self.CORS_ORIGINS.strip() == "*":
            problems.append("CORS_ORIGINS cannot be '*' in production")
        if "localhost" in self.DATABASE_URL.lower():
            problems.append("DATABASE_URL cannot point to localhost in production")
        if self.DEBUG:
            problems.append("DEBUG should be False in production")

        return problems

    def get_database_url(self) -> str:
        """Connection URL for the asyncpg driver."""
        url = self.DATABASE_URL
        if url:
            for scheme in ("postgresql://", "postgres://"):
                if url.startswith(scheme):
                    return ASYNC_DRIVER_PREFIX + url[len(scheme):]
            return url

        if not (self.POSTGRES_HOST and self.POSTGRES_USER and self.POSTGRES_PASSWORD):
            raise ValueError("No database configuration found. Set DATABASE_URL or POSTGRES_* variables.")

        return (
            f"{ASYNC_DRIVER_PREFIX}{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    def get_encryption_key(self) -> str:
        """
        Key material for the field cipher.

        Falls back to the development key outside production so a local
        server starts without secrets; production must configure its own.
        """
        if self.ENCRYPTION_KEY:
            return self.ENCRYPTION_KEY
        if self.is_production:
            raise ValueError("ENCRYPTION_KEY is required in production")
        logger.warning("ENCRYPTION_KEY not set - using development key")
        return DEV_ENCRYPTION_KEY


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process; raises if production settings are unusable."""
    settings = Settings()

    logger.info(
        f"Loaded settings: environment={settings.ENVIRONMENT} debug={settings.debug_enabled} "
        f"cors_origins={len(settings.cors_origins_list)}"
    )

    if settings.is_production:
        problems = settings.validate_production_config()
        for problem in problems:
            logger.error(f"Configuration error: {problem}")
        if problems:
            raise ValueError(f"Production configuration invalid: {'; '.join(problems)}")

    return settings


def get_cors_config(settings: Settings) -> dict:
    """Keyword arguments for CORSMiddleware."""
    return {
        "allow_origins": settings.cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        "allow_headers": ["Authorization", "Content-Type", "Accept", "Origin", "X-Request-ID", "X-Actor"],
        "expose_headers": ["X-Request-ID", "X-Process-Time"],
        "max_age": 600,
    }


def validate_environment(settings: Settings) -> dict:
    """
    Summarize which settings are present for the startup log.

    Missing required values are errors in production and warnings
    elsewhere; secrets are reported as "Set"/"Not set", never echoed.
    """
    report = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {},
    }
    missing = report["errors"] if settings.is_production else report["warnings"]

    required = {
        "DATABASE_URL": settings.DATABASE_URL or settings.POSTGRES_HOST,
        "ENCRYPTION_KEY": settings.ENCRYPTION_KEY,
    }
    for name, value in required.items():
        report["variables"][name] = "Set" if value else "Not set"
        if not value:
            missing.append(f"{name} is not set")

    report["variables"]["SENTRY_DSN"] = "Set" if settings.SENTRY_DSN else "Not set"
    if not settings.SENTRY_DSN:
        report["warnings"].append("Error tracking disabled")

    if settings.is_production:
        for problem in settings.validate_production_config():
            if problem not in report["errors"]:
                report["errors"].append(problem)

    report["valid"] = not report["errors"]
    return report
