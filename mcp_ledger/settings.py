# mcp_ledger/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional
import logging
from pathlib import Path

from .core.errors import ConfigurationError

logger = logging.getLogger(__name__)

# This settings.py file is at <project>/mcp_ledger/settings.py
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
DOTENV_PATH = PROJECT_ROOT / ".env"

if DOTENV_PATH.exists():
    logger.info(f"SETTINGS.PY: .env file found at: {DOTENV_PATH}")
else:
    logger.debug(f"SETTINGS.PY: no .env file at {DOTENV_PATH}. Relying on OS env vars or defaults.")

# Environment variable names that must be present before the gateway serves traffic
REQUIRED_SECRET_FIELDS = {
    "xero_client_id": "XERO_CLIENT_ID",
    "xero_client_secret": "XERO_CLIENT_SECRET",
    "bearer_signing_secret": "BEARER_SIGNING_SECRET",
    "oauth_client_id": "OAUTH_CLIENT_ID",
    "oauth_client_secret": "OAUTH_CLIENT_SECRET",
}


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    app_name: str = "MCP Ledger Gateway"
    debug_mode: bool = False
    public_base_url: str = "http://127.0.0.1:8000"

    # SQLite configuration
    sqlite_db_path: str = "./mcp_ledger_data.sqlite3"

    # Session management: "memory" keeps sessions in-process, "redis" shares them
    session_backend: str = "memory"
    session_grace_seconds: int = 45
    session_sweep_interval_seconds: int = 15

    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    redis_ssl: bool = False

    fastmcp_log_level: str = "INFO"

    # Bearer session tokens (signed, stateless)
    bearer_signing_secret: Optional[str] = None
    bearer_token_algorithm: str = "HS256"
    bearer_token_lifetime_days: int = 30

    # OAuth client registered for this gateway (authorization-code grant)
    oauth_client_id: Optional[str] = None
    oauth_client_secret: Optional[str] = None
    oauth_redirect_uris: str = Field(
        default="https://claude.ai/api/mcp/auth_callback",
        description="Comma-separated redirect URIs registered for the OAuth client."
    )
    oauth_state_ttl_seconds: int = 600
    oauth_access_token_lifetime_days: int = 30

    # Upstream accounting provider (Xero)
    xero_client_id: Optional[str] = None
    xero_client_secret: Optional[str] = None
    xero_authorize_url: str = "https://login.xero.com/identity/connect/authorize"
    xero_token_url: str = "https://identity.xero.com/connect/token"
    xero_connections_url: str = "https://api.xero.com/connections"
    xero_api_base_url: str = "https://api.xero.com/api.xro/2.0"
    xero_scopes: str = (
        "openid profile email offline_access accounting.transactions "
        "accounting.contacts accounting.reports.read accounting.settings.read"
    )
    upstream_timeout_seconds: float = 20.0
    upstream_max_retries: int = 3
    upstream_backoff_base_seconds: float = 0.5
    token_refresh_margin_seconds: int = 300

    # Security settings
    admin_api_key: Optional[str] = Field(
        default=None,
        description="API Key for accessing admin routes."
    )
    credential_encryption_key: Optional[str] = Field(
        default=None,
        description="Fernet key used to encrypt upstream OAuth tokens at rest."
    )

    model_config = SettingsConfigDict(
        env_file=DOTENV_PATH if DOTENV_PATH.exists() else None,
        extra="ignore",
        env_file_encoding='utf-8'
    )

    @property
    def registered_redirect_uris(self) -> List[str]:
        return [uri.strip() for uri in self.oauth_redirect_uris.split(",") if uri.strip()]

    def missing_required_secrets(self) -> List[str]:
        """Return the environment variable names of required secrets that are unset or blank."""
        missing = []
        for field_name, env_name in REQUIRED_SECRET_FIELDS.items():
            value = getattr(self, field_name)
            if value is None or not str(value).strip():
                missing.append(env_name)
        return missing

    def validate_required_secrets(self) -> None:
        """
        Fail fast when the credential set is incomplete.

        Raises:
            ConfigurationError: naming every missing variable and how to supply it.
        """
        missing = self.missing_required_secrets()
        if missing:
            raise ConfigurationError(
                "Refusing to start: missing required configuration "
                f"{', '.join(missing)}. Set them in the environment or in {DOTENV_PATH}. "
                "Use 'ledger utils generate-secret' to create signing secrets."
            )
        logger.info("SETTINGS.PY: all required secrets are present.")


# Initialize settings instance
settings = Settings()

logger.debug(
    f"SETTINGS.PY: debug_mode={settings.debug_mode}, session_backend='{settings.session_backend}', "
    f"sqlite_db_path='{settings.sqlite_db_path}', "
    f"bearer_signing_secret={'********' if settings.bearer_signing_secret else 'None'}, "
    f"admin_api_key={'********' if settings.admin_api_key else 'None'}"
)
