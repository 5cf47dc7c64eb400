"""
Central configuration module for CMS Regen
Reads and validates environment variables with strict checks for production
"""
import os
import re
import sys
from typing import Optional

from dotenv import load_dotenv

# Only load .env in development
if os.getenv("ENV", "dev").lower() == "dev":
    load_dotenv()


class Config:
    """Central configuration class with environment variable validation"""

    # Environment
    ENV: str = os.getenv("ENV", "dev").lower()

    # Database (PostgreSQL in staging/prod, SQLite accepted for dev/test)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "5"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "900"))
    DB_POOL_TIMEOUT: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    DB_STATEMENT_TIMEOUT: int = int(os.getenv("DB_STATEMENT_TIMEOUT", "10000"))  # milliseconds

    # Public URL of the web app (checkout redirects)
    APP_URL: str = os.getenv("APP_URL", "http://localhost:3000")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "")

    # Payment provider - Stripe
    STRIPE_SECRET_KEY: Optional[str] = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET: Optional[str] = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_CURRENCY: str = os.getenv("STRIPE_CURRENCY", "usd")

    # Metering
    PRICE_PER_GENERATION_CENTS: int = int(os.getenv("PRICE_PER_GENERATION_CENTS", "89"))
    FREE_GENERATION_LIMIT: int = int(os.getenv("FREE_GENERATION_LIMIT", "5"))

    # Credentials at rest (64 hex characters = 32 bytes)
    ENCRYPTION_KEY: str = os.getenv("ENCRYPTION_KEY", "")

    # Content generation
    MANAGED_OPENAI_API_KEY: Optional[str] = os.getenv("MANAGED_OPENAI_API_KEY")
    TEXT_MODEL: str = os.getenv("TEXT_MODEL", "gpt-4o")
    IMAGE_MODEL: str = os.getenv("IMAGE_MODEL", "dall-e-3")
    IMAGE_SIZE: str = os.getenv("IMAGE_SIZE", "1792x1024")

    # External content store
    WEBFLOW_API_BASE_URL: str = os.getenv("WEBFLOW_API_BASE_URL", "https://api.webflow.com/v2")
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

    # Build version (set during build/deploy)
    BUILD_VERSION: str = os.getenv("BUILD_VERSION", "dev")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def __init__(self):
        """Initialize configuration and validate required variables"""
        self._validate()

    def _validate(self):
        """Validate required configuration based on environment"""
        errors = []

        if self.ENV not in ["dev", "test", "staging", "prod"]:
            errors.append(f"Invalid ENV value: {self.ENV}. Must be 'dev', 'test', 'staging', or 'prod'")

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required but not set")
        elif self.ENV in ["staging", "prod"] and not self.DATABASE_URL.startswith("postgresql"):
            errors.append(f"DATABASE_URL must be a PostgreSQL connection string in {self.ENV} (got: {self.DATABASE_URL[:30]}...)")

        if not self.ENCRYPTION_KEY:
            errors.append("ENCRYPTION_KEY is required but not set")
        elif not re.fullmatch(r"[0-9a-fA-F]{64}", self.ENCRYPTION_KEY):
            errors.append(f"ENCRYPTION_KEY must be 64 hex characters (current length: {len(self.ENCRYPTION_KEY)})")

        if self.PRICE_PER_GENERATION_CENTS <= 0:
            errors.append("PRICE_PER_GENERATION_CENTS must be positive")
        if self.FREE_GENERATION_LIMIT < 0:
            errors.append("FREE_GENERATION_LIMIT must not be negative")

        if self.ENV in ["staging", "prod"]:
            if not self.STRIPE_SECRET_KEY:
                errors.append(f"STRIPE_SECRET_KEY is required in {self.ENV}")
            if not self.STRIPE_WEBHOOK_SECRET:
                errors.append(f"STRIPE_WEBHOOK_SECRET is required in {self.ENV}")
            if not self.APP_URL.startswith("https://"):
                errors.append("APP_URL must use HTTPS in staging/production")

        # Fail fast in staging/prod
        if errors and self.ENV in ["staging", "prod"]:
            print("=" * 60, file=sys.stderr)
            print("CONFIGURATION VALIDATION FAILED", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            sys.exit(1)

        if errors and self.ENV == "dev":
            print("=" * 60, file=sys.stderr)
            print("CONFIGURATION WARNINGS (dev mode - continuing)", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)

    @property
    def is_dev(self) -> bool:
        """Check if running in development mode"""
        return self.ENV == "dev"

    def get_database_url(self) -> str:
        """Get database URL (alias for DATABASE_URL)"""
        return self.DATABASE_URL


# Create global config instance
config = Config()
