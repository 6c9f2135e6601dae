"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Mock mode enables local development without a database.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.lifecycle.models import CheckInWindow, LifecycleConfig, parse_due_time


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    
    All settings can be overridden via environment variables.
    For lists (like api_keys), use comma-separated values in env.
    """
    
    # API Configuration
    api_title: str = "Check-in Lifecycle API"
    api_version: str = "v1"
    api_keys: str = Field(
        default="dev-key-1,dev-key-2",
        description="Comma-separated API keys. Using a list enables key rotation without downtime."
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
        default="COACHING",
        description="Snowflake database name"
    )
    snowflake_schema: str = Field(
        default="CHECKINS",
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
    snowflake_documents_table: str = Field(
        default="CHECKIN_DOCUMENTS",
        description="Table holding every collection as (collection, doc_id, data VARIANT) rows"
    )
    snowflake_mock_mode: bool = Field(
        default=False,
        description="Use in-memory document store instead of Snowflake. Enables local dev without DB."
    )
    
    # Schedule Defaults
    default_due_time: str = Field(
        default="09:00",
        description="Due time (HH:MM) for new slots and the time-of-day alignment normalizes to"
    )
    check_in_window_enabled: bool = Field(
        default=True,
        description="Whether new series get a restricted check-in window by default"
    )
    check_in_window_start_day: str = Field(default="friday")
    check_in_window_start_time: str = Field(default="10:00")
    check_in_window_end_day: str = Field(default="monday")
    check_in_window_end_time: str = Field(default="22:00")
    
    # Write Behavior
    batch_write_limit: int = Field(
        default=500,
        description="Maximum operations per batch write. Alignment and repair chunk to this size."
    )
    write_retry_attempts: int = Field(
        default=3,
        description="Attempts for transient write failures. Every write is idempotent or transactional."
    )
    audit_max_workers: int = Field(
        default=4,
        description="Clients audited/repaired in parallel during system-wide runs"
    )
    
    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    
    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )
    
    @property
    def api_keys_list(self) -> list[str]:
        """Parse comma-separated API keys into a list."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]
    
    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
    
    @property
    def default_check_in_window(self) -> CheckInWindow:
        return CheckInWindow(
            enabled=self.check_in_window_enabled,
            start_day=self.check_in_window_start_day,
            start_time=self.check_in_window_start_time,
            end_day=self.check_in_window_end_day,
            end_time=self.check_in_window_end_time,
        )
    
    def lifecycle_config(self) -> LifecycleConfig:
        """
        Build the value object injected into the schedule generator and aligner.
        
        Raises InvalidInput if the configured due time is not HH:MM.
        """
        return LifecycleConfig(
            due_time=parse_due_time(self.default_due_time),
            check_in_window=self.default_check_in_window,
            batch_size=self.batch_write_limit,
            write_retry_attempts=self.write_retry_attempts,
            max_workers=self.audit_max_workers,
        )
    
    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.
        
        Returns list of missing required fields.
        """
        missing = []
        
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
    
    Using lru_cache means we only load settings once per process.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings()
