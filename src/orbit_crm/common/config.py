"""OrbitCRM configuration via pydantic-settings."""

import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "secret_key": "insecure-dev-key-change-me",
    "api_key": "insecure-admin-key-change-me",
    "super_admin_key": "insecure-super-admin-key-change-me",
}


class OrbitSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ORBIT_")

    environment: str = "development"
    secret_key: str = "insecure-dev-key-change-me"
    log_level: str = "INFO"

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/orbit.db"

    # API
    api_title: str = "OrbitCRM"
    api_version: str = "0.1.0"
    api_key: str = "insecure-admin-key-change-me"
    super_admin_key: str = "insecure-super-admin-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: list[str] = ["http://localhost:3000"]
    app_url: str = "http://localhost:3000"

    # Rate limits (requests per window, window in seconds)
    chat_rate_limit: int = 20
    chat_rate_window: int = 60
    invite_rate_limit: int = 5
    invite_rate_window: int = 600
    # When set, rate-limit windows live in Redis instead of process memory
    redis_url: str = ""

    # AI chat
    preflight_estimate: int = 2_000
    chat_max_steps: int = 3
    chat_timeout: int = 30  # seconds
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    google_api_key: str = ""
    google_base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    # Email ("resend", "sendgrid" or empty for log-only)
    email_provider: str = ""
    email_api_key: str = ""
    email_from: str = "noreply@orbitcrm.app"
    email_from_name: str = "OrbitCRM"

    # Client portal
    portal_link_ttl: int = 3600  # magic links expire after 1 hour
    portal_session_max_age: int = 30 * 24 * 3600
    portal_cookie_secure: bool = False

    # Document storage
    storage_dir: str = "./data/documents"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if not self.is_development and insecure_fields:
            env_vars = ", ".join(f"ORBIT_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default keys; set ORBIT_SECRET_KEY, ORBIT_API_KEY "
                "and ORBIT_SUPER_ADMIN_KEY for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> OrbitSettings:
    settings = OrbitSettings()
    settings.validate_for_production()
    return settings
