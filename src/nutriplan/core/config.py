"""NutriPlan - Configuration Management.

Environment-based configuration using Pydantic settings for development,
testing and production deployments.
"""

from dataclasses import dataclass
from functools import lru_cache
import logging
import re
from typing import Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Configure logger
logger = logging.getLogger(__name__)

DEV_JWT_SECRET = "dev-jwt-secret-change-me"

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str | int) -> int:
    """Convert a duration such as ``7d``, ``1h``, ``30m`` or ``3600`` to seconds."""
    if isinstance(value, int):
        return value
    match = _DURATION_PATTERN.match(value)
    if not match:
        msg = f"Invalid duration: {value!r}"
        raise ValueError(msg)
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[unit]


@dataclass
class MiddlewareConfig:
    """Configuration for the HTTP middleware stack."""

    # Exempt paths (no rate limiting, no request logging)
    exempt_paths: list[str] | None = None

    # Rate limiting
    rate_limit_enabled: bool = True
    login_paths: tuple[str, ...] = (
        "/api/auth/login",
        "/api/firebase/login",
        "/api/hybrid/login",
    )

    # Logging settings
    record_metrics: bool = True
    log_requests: bool = False

    def __post_init__(self) -> None:
        """Initialize default exempt paths if not provided."""
        if self.exempt_paths is None:
            self.exempt_paths = [
                "/",
                "/health",
                "/docs",
                "/openapi.json",
                "/redoc",
            ]


class Settings(BaseSettings):
    """Application settings with secure defaults and validation."""

    # Environment settings
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    testing: bool = Field(default=False, alias="TESTING")

    # Server settings
    host: str = Field(default="127.0.0.1", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"], alias="CORS_ORIGINS"
    )
    client_url: str = Field(default="http://localhost:3000", alias="CLIENT_URL")

    # Application settings
    app_name: str = "NutriPlan API"
    app_version: str = "1.0.0"

    # Session tokens and passwords
    jwt_secret: str = Field(default=DEV_JWT_SECRET, alias="JWT_SECRET")
    jwt_expires_in: str = Field(default="7d", alias="JWT_EXPIRES_IN")
    password_reset_expires_in: str = Field(
        default="1h", alias="PASSWORD_RESET_EXPIRES_IN"
    )
    bcrypt_rounds: int = Field(default=12, alias="BCRYPT_ROUNDS")
    min_password_length: int = Field(default=6, alias="MIN_PASSWORD_LENGTH")
    max_password_length: int = Field(default=128, alias="MAX_PASSWORD_LENGTH")

    # Rate limiting
    rate_limit_window_ms: int = Field(default=900_000, alias="RATE_LIMIT_WINDOW_MS")
    rate_limit_max: int = Field(default=100, alias="RATE_LIMIT_MAX")
    login_rate_limit_max: int = Field(default=5, alias="LOGIN_RATE_LIMIT_MAX")

    # Pagination
    default_page_size: int = Field(default=20, alias="DEFAULT_PAGE_SIZE")
    max_page_size: int = Field(default=100, alias="MAX_PAGE_SIZE")

    # Storage settings
    storage_backend: str = Field(default="memory", alias="STORAGE_BACKEND")
    firestore_project_id: str = Field(default="", alias="FIRESTORE_PROJECT_ID")
    firestore_database: str = Field(default="(default)", alias="FIRESTORE_DATABASE")
    redis_url: str = Field(default="", alias="REDIS_URL")

    # Firebase service account
    firebase_project_id: str = Field(default="", alias="FIREBASE_PROJECT_ID")
    firebase_private_key: str = Field(default="", alias="FIREBASE_PRIVATE_KEY")
    firebase_client_email: str = Field(default="", alias="FIREBASE_CLIENT_EMAIL")
    firebase_private_key_id: str = Field(default="", alias="FIREBASE_PRIVATE_KEY_ID")
    firebase_client_id: str = Field(default="", alias="FIREBASE_CLIENT_ID")
    firebase_client_cert_url: str = Field(
        default="", alias="FIREBASE_CLIENT_CERT_URL"
    )

    # Email (SMTP)
    smtp_host: str = Field(default="", alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_secure: bool = Field(default=False, alias="SMTP_SECURE")
    smtp_user: str = Field(default="", alias="SMTP_USER")
    smtp_pass: str = Field(default="", alias="SMTP_PASS")
    from_email: str = Field(default="noreply@nutrition-app.com", alias="FROM_EMAIL")

    # Notification delivery
    enable_notification_worker: bool = Field(
        default=True, alias="ENABLE_NOTIFICATION_WORKER"
    )
    notification_concurrency: int = Field(default=10, alias="NOTIFICATION_CONCURRENCY")
    notification_base_delay_ms: int = Field(
        default=5000, alias="NOTIFICATION_BASE_DELAY_MS"
    )
    notification_ttl_days: int = Field(default=30, alias="NOTIFICATION_TTL_DAYS")
    reconcile_interval_seconds: int = Field(
        default=300, alias="NOTIFICATION_RECONCILE_INTERVAL_SECONDS"
    )
    reconcile_stale_after_seconds: int = Field(
        default=600, alias="NOTIFICATION_RECONCILE_STALE_AFTER_SECONDS"
    )
    notification_lease_seconds: int = Field(default=300, alias="NOTIFICATION_LEASE_SECONDS")

    # Audit trail and usage metrics
    audit_logging_enabled: bool = Field(default=True, alias="AUDIT_LOGGING_ENABLED")
    audit_retention_days: int = Field(default=90, alias="AUDIT_RETENTION_DAYS")
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")
    metrics_retention_days: int = Field(default=90, alias="METRICS_RETENTION_DAYS")

    # Middleware configuration
    middleware_config: MiddlewareConfig = Field(default_factory=MiddlewareConfig)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "allow",
        "populate_by_name": True,
    }

    @model_validator(mode="after")
    def validate_environment_requirements(self) -> Self:
        """Validate environment-specific requirements."""
        # Durations must parse regardless of environment
        parse_duration(self.jwt_expires_in)
        parse_duration(self.password_reset_expires_in)

        if self.is_testing():
            return self

        if self.environment.lower() == "development":
            if not self.firebase_configured():
                logger.warning(
                    "Development mode: Firebase credentials missing, "
                    "federated login endpoints will report 'not configured'"
                )

        elif self.environment.lower() == "production":
            required_for_production: list[str] = []

            if self.jwt_secret == DEV_JWT_SECRET:
                required_for_production.append("JWT_SECRET")
            if self.storage_backend == "firestore" and not self.firestore_project_id:
                required_for_production.append("FIRESTORE_PROJECT_ID")

            if required_for_production:
                missing_vars = ", ".join(required_for_production)
                msg = f"Production environment requires: {missing_vars}"
                raise ValueError(msg)

        return self

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment.lower() == "production"

    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment.lower() == "testing" or (
            self.testing and self.environment.lower() != "production"
        )

    def firebase_configured(self) -> bool:
        """Check whether the Firebase service account is fully configured."""
        return bool(
            self.firebase_project_id
            and self.firebase_private_key
            and self.firebase_client_email
        )

    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)

    def jwt_expires_seconds(self) -> int:
        return parse_duration(self.jwt_expires_in)

    def password_reset_expires_seconds(self) -> int:
        return parse_duration(self.password_reset_expires_in)

    def log_configuration_summary(self) -> None:
        """Log configuration summary for debugging."""
        logger.info("NutriPlan configuration summary:")
        logger.info("   Environment: %s", self.environment)
        logger.info("   Debug mode: %s", self.debug)
        logger.info("   Storage backend: %s", self.storage_backend)
        logger.info("   Redis: %s", "configured" if self.redis_url else "in-memory")
        logger.info("   Firebase: %s", self.firebase_configured())
        logger.info("   SMTP: %s", self.smtp_host or "Not set")
        logger.info("   Session token lifetime: %ss", self.jwt_expires_seconds())

    def get_middleware_config(self) -> MiddlewareConfig:
        """Get middleware configuration based on environment."""
        config = MiddlewareConfig(record_metrics=self.metrics_enabled)

        if self.is_development():
            config.log_requests = True
        elif self.is_testing():
            config.rate_limit_enabled = False

        return config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
