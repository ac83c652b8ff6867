"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_STATE_SECRET = "CHANGE-ME-IN-PRODUCTION-use-openssl-rand-hex-32"


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Azure AD app registration
    AZURE_TENANT_ID: str = "dummy-tenant-id"
    AZURE_CLIENT_ID: str = "dummy-client-id"
    AZURE_CLIENT_SECRET: str = "dummy-secret"
    AZURE_AUTHORITY_HOST: str = "https://login.microsoftonline.com"

    # Microsoft Graph
    GRAPH_API_ENDPOINT: str = "https://graph.microsoft.com/v1.0"
    GRAPH_APP_SCOPE: str = "https://graph.microsoft.com/.default"
    GRAPH_TIMEOUT: float = 30.0

    # Delegated OAuth (authorization code flow)
    OAUTH_REDIRECT_URI: str = "http://localhost:8000/auth/callback"
    OAUTH_SCOPES: str = "openid profile offline_access User.Read OnlineMeetings.Read"
    OAUTH_STATE_SECRET: str = DEFAULT_STATE_SECRET
    OAUTH_STATE_ALGORITHM: str = "HS256"
    OAUTH_STATE_TTL_SECONDS: int = 600

    # Webhook
    WEBHOOK_CLIENT_STATE: str = ""  # Empty disables the clientState check

    # Transcript discovery
    TRANSCRIPT_RETRY_ATTEMPTS: int = 3
    TRANSCRIPT_RETRY_DELAY_SECONDS: float = 10.0
    NOTIFICATION_SETTLE_DELAY_SECONDS: float = 30.0

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Monitoring
    SENTRY_DSN: str = ""

    @property
    def oauth_scopes(self) -> list[str]:
        return self.OAUTH_SCOPES.split()

    def config_warnings(self) -> list[str]:
        """Return human-readable problems with the current configuration.

        Nothing here is fatal: the service starts with dummy credentials so
        the webhook handshake and parser can be exercised before the app
        registration exists.
        """
        warnings: list[str] = []
        dummy = [
            name
            for name in ("AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET")
            if not getattr(self, name) or getattr(self, name).startswith("dummy-")
        ]
        if dummy:
            warnings.append(f"Using dummy credentials for: {', '.join(dummy)}")

        if self.ENVIRONMENT == Environment.production:
            if "localhost" in self.OAUTH_REDIRECT_URI:
                warnings.append("OAUTH_REDIRECT_URI points to localhost in production")
            if self.OAUTH_STATE_SECRET == DEFAULT_STATE_SECRET:
                warnings.append("OAUTH_STATE_SECRET is the default value in production")
        return warnings


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
