"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Mock modes enable local development without Snowflake or real buckets.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like cors_origins), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "CList API"
    api_version: str = "v1"

    # Site presentation (read by the UI)
    site_title: str = Field(
        default="CList",
        description="Title shown in the UI header"
    )
    site_announcement: str = Field(
        default="",
        description="Announcement shown once per browser session. Empty disables it."
    )

    # Administrator
    admin_username: str = Field(
        default="admin",
        description="Administrator login name"
    )
    admin_password: str = Field(
        default="",
        description="Administrator password. Login is disabled while empty."
    )
    session_secret: str = Field(
        default="",
        description="Key signing admin session tokens (HS256 JWT)"
    )
    session_ttl_hours: int = Field(
        default=24 * 7,
        description="How long an admin session stays valid"
    )
    session_cookie_name: str = Field(
        default="clist_session",
        description="Cookie carrying the admin session token"
    )
    session_cookie_secure: bool = Field(
        default=False,
        description="Mark the session cookie Secure (enable behind HTTPS)"
    )
    credentials_encryption_key: str = Field(
        default="",
        description="Fernet key used to encrypt storage secrets at rest. Empty stores them as-is."
    )

    # Snowflake Configuration
    snowflake_account: str = Field(
        default="",
        description="Snowflake account identifier"
    )
    snowflake_user: str = Field(
        default="",
        description="Snowflake service account username"
    )
    snowflake_password: str = Field(
        default="",
        description="Snowflake service account password"
    )
    snowflake_private_key_path: Optional[str] = Field(
        default=None,
        description="Path to RSA private key file for key-pair authentication"
    )
    snowflake_private_key_base64: Optional[str] = Field(
        default=None,
        description="Base64-encoded private key (for deployment, alternative to file path)"
    )
    snowflake_database: str = Field(
        default="CLIST",
        description="Snowflake database name"
    )
    snowflake_schema: str = Field(
        default="PUBLIC",
        description="Snowflake schema name"
    )
    snowflake_warehouse: str = Field(
        default="COMPUTE_WH",
        description="Snowflake warehouse for query execution"
    )
    snowflake_role: Optional[str] = Field(
        default=None,
        description="Snowflake role to use (optional)"
    )
    snowflake_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real Snowflake connection. Enables local dev without DB."
    )

    # Object storage
    storage_mock_mode: bool = Field(
        default=False,
        description="Serve every configured storage from memory instead of contacting its endpoint."
    )
    max_upload_size_mb: int = Field(
        default=5 * 1024,
        description="Maximum size of a single uploaded file in MB"
    )

    # Offline download
    offline_timeout_seconds: float = Field(
        default=60.0,
        description="Network timeout for fetching a remote URL"
    )
    offline_max_size_mb: int = Field(
        default=2 * 1024,
        description="Maximum size of a remotely fetched file in MB"
    )
    offline_max_retries: int = Field(
        default=2,
        description="Retries after a transport error or 5xx response"
    )
    offline_user_agent: str = Field(
        default="CList-OfflineDownload/0.1",
        description="User-Agent sent when fetching remote URLs"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:5173",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def offline_max_size_bytes(self) -> int:
        return self.offline_max_size_mb * 1024 * 1024

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        if not self.admin_password:
            missing.append("ADMIN_PASSWORD")
        if not self.session_secret:
            missing.append("SESSION_SECRET")

        # Snowflake only required if not in mock mode
        if not self.snowflake_mock_mode:
            if not self.snowflake_account:
                missing.append("SNOWFLAKE_ACCOUNT")
            if not self.snowflake_user:
                missing.append("SNOWFLAKE_USER")
            # Need either password or private key
            if (
                not self.snowflake_password
                and not self.snowflake_private_key_path
                and not self.snowflake_private_key_base64
            ):
                missing.append("SNOWFLAKE_PASSWORD or SNOWFLAKE_PRIVATE_KEY_PATH")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once per process.
    For tests, call get_settings.cache_clear() to reset.
    """
    return Settings()
