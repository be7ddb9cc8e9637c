"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Storefront happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. keycloak_realm -> KEYCLOAK_REALM).

  @model_validator(mode="after"): cross-field validation once every field is
      resolved. Development mode generates a SECRET_KEY with a warning;
      production refuses to start without one.

Development vs production switches (ENVIRONMENT):
  - relaxed rate limits (violations logged, request proceeds)
  - local token decode instead of the userinfo round trip
  - simulated identity provider when no client secret is configured
  - reset token echoed in the forgot-password response
  - stack traces included in error bodies

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, audit/, vendors/, or cache/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("storefront.config")

_BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    environment: str = "production"  # "development", "production", "test"
    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    log_level: str = "INFO"
    frontend_url: str = "http://localhost:3000"
    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Identity provider (Keycloak)
    # ------------------------------------------------------------------

    keycloak_server_url: str = "http://localhost:8080"
    keycloak_realm: str = "storefront"
    keycloak_client_id: str = "storefront-api"
    keycloak_client_secret: str = ""
    keycloak_admin_client_id: str = "admin-cli"
    keycloak_admin_username: str = "admin"
    keycloak_admin_password: str = ""
    # Skip the userinfo round trip and trust decoded claims.
    skip_userinfo: bool = False

    userinfo_timeout_seconds: float = 5.0
    token_grant_timeout_seconds: float = 10.0
    admin_api_timeout_seconds: float = 15.0

    # ------------------------------------------------------------------
    # Token cache
    # ------------------------------------------------------------------

    token_cache_ttl_seconds: int = 300
    token_cache_max_entries: int = 1000

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    audit_log_path: str = str(_BASE_DIR / "logs" / "audit.log")
    audit_max_bytes: int = 10 * 1024 * 1024
    audit_max_files: int = 5

    # ------------------------------------------------------------------
    # Auth monitor
    # ------------------------------------------------------------------

    brute_force_threshold: int = 5
    suspicious_threshold: int = 3
    monitor_window_seconds: int = 15 * 60
    suspicious_activity_alert_threshold: int = 10

    # ------------------------------------------------------------------
    # Rate limiting (limits-library strings)
    # ------------------------------------------------------------------

    api_rate_limit: str = "100 per 15 minutes"
    auth_rate_limit: str = "5 per 15 minutes"
    auth_rate_limit_dev: str = "50 per 15 minutes"
    registration_rate_limit: str = "3 per hour"
    registration_rate_limit_dev: str = "20 per hour"
    refresh_rate_limit: str = "10 per 15 minutes"
    refresh_rate_limit_dev: str = "50 per 15 minutes"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    user_db_url: str = f"sqlite:///{_BASE_DIR / 'storefront_users.db'}"
    vendor_db_url: str = f"sqlite:///{_BASE_DIR / 'storefront_vendors.db'}"

    # ------------------------------------------------------------------
    # Email (SMTP; empty host means "log instead of send")
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = "noreply@storefront.local"
    email_from_name: str = "Storefront"

    # Lifetimes for single-use tokens
    email_verification_expire_seconds: int = 12 * 60 * 60
    password_reset_expire_seconds: int = 60 * 60

    # ------------------------------------------------------------------
    # First SuperAdmin (read by storefront-init-super-admin only)
    # ------------------------------------------------------------------

    super_admin_email: str = ""
    super_admin_password: str = ""

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def keycloak_realm_url(self) -> str:
        return f"{self.keycloak_server_url.rstrip('/')}/realms/{self.keycloak_realm}"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Non-production (development, test): auto-generate a random key with a
        warning. Verification and reset tokens will not survive a restart.

        Production: refuse to start if SECRET_KEY is missing.

        Both: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if not self.is_production:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Issued tokens will not survive restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set ENVIRONMENT=development."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
