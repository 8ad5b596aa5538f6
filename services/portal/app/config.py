"""
Centralized configuration management for the PAL portal backend.
Loads and validates all environment variables.
"""
import os
from typing import Dict


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self):
        # Database
        # Database URL with fallback for development
        database_url = os.getenv("DATABASE_URL", "sqlite:///./pal_dev.db")
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        self.DATABASE_URL = database_url
        self.DEBUG_SQL = _flag("DEBUG_SQL")

        # Object storage (S3 or any S3-compatible endpoint)
        self.AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID", "")
        self.AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY", "")
        # Prefer explicit AWS_REGION, fall back to AWS_DEFAULT_REGION, then us-east-1
        self.AWS_REGION = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION", "us-east-1")
        self.S3_BUCKET = os.getenv("S3_BUCKET", "pdfs")
        self.S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL") or None
        self.SIGNED_URL_TTL_SECONDS = int(os.getenv("SIGNED_URL_TTL_SECONDS", "60"))
        # Deployment variant: answer downloads with a redirect instead of a JSON url
        self.DOWNLOAD_REDIRECT = _flag("DOWNLOAD_REDIRECT")
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))

        # Auth collaborator (bearer tokens issued by the hosted auth provider)
        self.AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "")
        self.AUTH_JWT_ALGORITHM = os.getenv("AUTH_JWT_ALGORITHM", "HS256")
        self.AUTH_JWT_AUDIENCE = os.getenv("AUTH_JWT_AUDIENCE", "authenticated")

        # Cloudflare Turnstile CAPTCHA
        self.TURNSTILE_SECRET_KEY = os.getenv("TURNSTILE_SECRET_KEY", "")
        self.TURNSTILE_VERIFY_URL = os.getenv(
            "TURNSTILE_VERIFY_URL",
            "https://challenges.cloudflare.com/turnstile/v0/siteverify",
        )
        self.TURNSTILE_TIMEOUT_SECONDS = float(os.getenv("TURNSTILE_TIMEOUT_SECONDS", "10"))

        # Sentry Error Tracking
        self.SENTRY_DSN = os.getenv("SENTRY_DSN", "")
        self.SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

        # Environment
        self.ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

        # CORS Configuration
        allowed_origins_str = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000")
        self.ALLOWED_ORIGINS = [origin.strip() for origin in allowed_origins_str.split(",") if origin.strip()]

        # Redis Configuration
        self.REDIS_URL = os.getenv("REDIS_URL") or os.getenv("UPSTASH_REDIS_URL")

        # Rate Limiting Configuration
        self.ENABLE_RATE_LIMITING = _flag("ENABLE_RATE_LIMITING", "true")
        self.RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "memory").lower()
        self.RATE_LIMIT_LIST = os.getenv("RATE_LIMIT_LIST", "100/10minute")
        self.RATE_LIMIT_REQUEST = os.getenv("RATE_LIMIT_REQUEST", "5/hour")
        self.RATE_LIMIT_CAPTCHA = os.getenv("RATE_LIMIT_CAPTCHA", "10/minute")

        # Security tracker
        self.BLACKLIST_THRESHOLD = int(os.getenv("BLACKLIST_THRESHOLD", "10"))
        self.SUSPICIOUS_WINDOW_SECONDS = int(os.getenv("SUSPICIOUS_WINDOW_SECONDS", "3600"))
        self.BLACKLIST_DURATION_SECONDS = int(os.getenv("BLACKLIST_DURATION_SECONDS", "86400"))

        # Material requests
        self.DUPLICATE_WINDOW_HOURS = int(os.getenv("DUPLICATE_WINDOW_HOURS", "24"))

        # Observability Configuration
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.OBS_REDACT_PII = _flag("OBS_REDACT_PII", "true")
        self.ENABLE_TRACING = _flag("ENABLE_TRACING")
        self.OTEL_EXPORTER_OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")
        self.OTEL_SERVICE_NAME_API = os.getenv("OTEL_SERVICE_NAME_API", "pal-api")

        # Validate required settings
        self._validate_settings()

    def _validate_settings(self):
        """Validate required settings with environment-aware relaxations."""
        is_prod = self.is_production

        # In production enforce collaborator secrets
        if is_prod:
            required_settings = [
                ('AUTH_JWT_SECRET', self.AUTH_JWT_SECRET),
                ('TURNSTILE_SECRET_KEY', self.TURNSTILE_SECRET_KEY),
                ('AWS_ACCESS_KEY_ID', self.AWS_ACCESS_KEY_ID),
                ('AWS_SECRET_ACCESS_KEY', self.AWS_SECRET_ACCESS_KEY),
            ]
            for name, value in required_settings:
                if value in ['CHANGE_ME', f'your_{name.lower()}', '']:
                    raise ValueError(f'{name} must be set to a real value, not a placeholder')

        if self.RATE_LIMIT_BACKEND not in ("memory", "redis"):
            raise ValueError(f'RATE_LIMIT_BACKEND must be "memory" or "redis", got {self.RATE_LIMIT_BACKEND!r}')

        # Redis requirement handling
        if self.RATE_LIMIT_BACKEND == "redis" and not self.REDIS_URL:
            if is_prod:
                raise ValueError('REDIS_URL or UPSTASH_REDIS_URL must be set when RATE_LIMIT_BACKEND=redis')
            # In non-production, fall back to the in-process limiter
            self.RATE_LIMIT_BACKEND = "memory"

    def is_rate_limiting_enabled(self) -> bool:
        """Check if rate limiting is enabled."""
        return self.ENABLE_RATE_LIMITING

    def uses_redis_rate_limiting(self) -> bool:
        return self.ENABLE_RATE_LIMITING and self.RATE_LIMIT_BACKEND == "redis"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    def is_storage_configured(self) -> bool:
        """Check if S3 storage is properly configured."""
        return bool(
            self.AWS_ACCESS_KEY_ID and
            self.AWS_SECRET_ACCESS_KEY and
            self.S3_BUCKET
        )

    def is_captcha_configured(self) -> bool:
        return bool(self.TURNSTILE_SECRET_KEY)

    def presence_report(self) -> Dict[str, bool]:
        """
        Report which collaborator settings are present.

        Only booleans are returned so the report is safe to expose to admins.
        """
        return {
            "database_url": bool(os.getenv("DATABASE_URL")),
            "storage_credentials": self.is_storage_configured(),
            "storage_endpoint": bool(self.S3_ENDPOINT_URL),
            "auth_jwt_secret": bool(self.AUTH_JWT_SECRET),
            "turnstile_secret_key": self.is_captcha_configured(),
            "redis_url": bool(self.REDIS_URL),
            "sentry_dsn": bool(self.SENTRY_DSN),
        }


# Global settings instance
settings = Settings()
