"""
core/config.py -- RecordVault settings, read once from the environment.

This is the only module that touches environment variables. Everything else
calls get_settings(), usually once at import into a module-level _settings.

How it is built:
  get_settings() is wrapped in lru_cache, so the first call builds Settings
      and every later call returns that same object.

  Settings is a pydantic-settings BaseSettings. Each field is filled from the
      upper-cased env var of the same name (webhook_secret <- WEBHOOK_SECRET),
      then from .env, then from its default.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates missing secrets with a warning, production
      mode refuses to start without them.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Every session
       hash, login-code hash, and stream-token signature is keyed with it.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY or
       WEBHOOK_SECRET is a hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
vault/, media/, storage/, or db/.
"""

import logging
import secrets
from datetime import datetime, timezone
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("recordvault.config")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Settings(BaseSettings):
    """Every tunable of the service.

    Defaults let Settings() build with no .env at all; validate_secrets()
    then decides whether the result is safe to run.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///recordvault.db"
    app_url: str = "http://localhost:8000"

    # ------------------------------------------------------------------
    # Customer sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie_name: str = "rv_session"
    session_ttl_days: int = Field(default=30, ge=1, le=90)
    login_code_ttl_minutes: int = Field(default=10, ge=3, le=30)
    stream_token_ttl_seconds: int = Field(default=3600, ge=60, le=24 * 3600)

    # ------------------------------------------------------------------
    # Operator (admin) sessions
    # ------------------------------------------------------------------

    admin_session_cookie_name: str = "rv_admin_session"
    admin_email: str = ""
    admin_password: str = ""
    admin_session_ttl_hours: int = Field(default=12, ge=1, le=48)

    # ------------------------------------------------------------------
    # Provisioning webhook
    # ------------------------------------------------------------------

    webhook_secret: str = ""
    webhook_timestamp_tolerance_seconds: int = Field(default=300, ge=30, le=900)

    # ------------------------------------------------------------------
    # Outbound mail (optional -- empty host means SMTP is disabled)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""

    # ------------------------------------------------------------------
    # Google Drive storage provider
    # ------------------------------------------------------------------

    google_oauth_client_id: str = ""
    google_oauth_client_secret: str = ""
    # Fallback used only when no refresh token was stored by the connect flow.
    google_oauth_refresh_token: str = ""
    google_drive_connect_redirect_uri: str = ""
    google_drive_scopes: str = "https://www.googleapis.com/auth/drive.readonly"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    # "memory://" keeps counters in-process. Any other URI (e.g. redis://host)
    # is handed to the limits library so instances share one counter store.
    rate_limit_storage_uri: str = "memory://"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def drive_connect_redirect_uri(self) -> str:
        if self.google_drive_connect_redirect_uri:
            return self.google_drive_connect_redirect_uri
        return f"{self.app_url.rstrip('/')}/api/v1/admin/drive/callback"

    @property
    def drive_scopes(self) -> list[str]:
        return [s.strip() for s in self.google_drive_scopes.split(",") if s.strip()]

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_from)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the secret policy [M6, M7].

        Dev mode (DEBUG=true): auto-generate SECRET_KEY and WEBHOOK_SECRET with
            a warning. Sessions will not survive restart and webhook callers
            cannot sign requests -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject SECRET_KEY shorter than 32 characters, WEBHOOK_SECRET
            shorter than 16, and a configured ADMIN_PASSWORD shorter than 12.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is not set. Provide it via the environment or .env, "
                    "or set DEBUG=true to run with a throwaway key."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")

        if not self.webhook_secret:
            if self.debug:
                self.webhook_secret = secrets.token_hex(16)
                logger.warning("Using auto-generated WEBHOOK_SECRET. Provisioning webhooks will be rejected.")
            else:
                raise ValueError("WEBHOOK_SECRET is required in production mode.")
        if len(self.webhook_secret) < 16:
            raise ValueError("WEBHOOK_SECRET must be at least 16 characters.")

        if self.admin_password and len(self.admin_password) < 12:
            raise ValueError("ADMIN_PASSWORD must be at least 12 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Cached Settings. Tests that change the environment must call
    get_settings.cache_clear() first."""
    return Settings()
