"""
Configuration Manager
--------------------
Settings for the credential and session service, loaded from the
environment (and an optional .env file) through pydantic-settings.
"""

from datetime import timedelta
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class ApplicationSettings(BaseSettings):
    """Main application configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Application metadata
    app_name: str = Field(default="LawCase Bench Auth", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # FastAPI server configuration
    fastapi_host: str = Field(default="0.0.0.0", description="FastAPI host")
    fastapi_port: int = Field(default=8000, description="FastAPI port")

    # PostgreSQL database configuration
    database_host: str = Field(default="localhost", description="PostgreSQL host")
    database_port: int = Field(default=5432, description="PostgreSQL port")
    database_user: str = Field(default="lawcase", description="PostgreSQL user")
    database_password: str = Field(
        default="lawcase", description="PostgreSQL password"
    )
    database_name: str = Field(
        default="lawcase_bench", description="PostgreSQL database name"
    )
    database_pool_size: int = Field(default=20, description="Connection pool size")
    database_max_overflow: int = Field(
        default=10, description="Max overflow connections"
    )

    # Credential store
    credential_store_backend: str = Field(
        default="postgres", description="Credential store backend: postgres or memory"
    )
    seed_default_roles: bool = Field(
        default=True, description="Seed default roles and permissions on startup"
    )
    default_role_name: str = Field(
        default="User", description="Role assigned to self-registered accounts"
    )

    # JWT configuration
    jwt_secret_key: str = Field(
        default="dev-only-access-token-signing-secret-change-me",
        description="Secret used to sign access tokens",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_access_token_expire_minutes: int = Field(
        default=15, description="Access token lifetime in minutes"
    )
    jwt_refresh_token_expire_days: int = Field(
        default=7, description="Refresh token lifetime in days"
    )
    email_verification_expire_hours: int = Field(
        default=24, description="Email verification link lifetime in hours"
    )

    # Password hashing and reset
    bcrypt_rounds: int = Field(default=12, description="bcrypt work factor")
    password_reset_expire_minutes: int = Field(
        default=60, description="Password reset token lifetime in minutes"
    )
    revoke_sessions_on_password_change: bool = Field(
        default=True,
        description="Revoke every refresh token of an account when its password changes",
    )

    # Two-factor authentication
    totp_issuer: str = Field(default="LawCase Bench", description="TOTP issuer label")
    totp_valid_window: int = Field(
        default=2, description="Accepted TOTP time steps on either side of now"
    )
    backup_code_count: int = Field(default=10, description="Backup codes per setup")

    # Outbound email
    smtp_host: Optional[str] = Field(default=None, description="SMTP host")
    smtp_port: int = Field(default=587, description="SMTP port")
    smtp_user: Optional[str] = Field(default=None, description="SMTP user")
    smtp_password: Optional[str] = Field(default=None, description="SMTP password")
    smtp_use_tls: bool = Field(default=True, description="Use STARTTLS")
    smtp_from_email: str = Field(
        default="noreply@lawcasebench.com", description="Sender address"
    )
    frontend_url: str = Field(
        default="http://localhost:3000", description="Frontend base URL for links"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is acceptable."""
        valid_levels = ["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper

    @field_validator("credential_store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        """Validate the credential store backend name."""
        v_lower = v.lower()
        if v_lower not in ("postgres", "memory"):
            raise ValueError("Credential store backend must be 'postgres' or 'memory'")
        return v_lower

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """HMAC secrets shorter than 32 characters are rejected."""
        if len(v) < 32:
            raise ValueError("JWT secret key must be at least 32 characters")
        return v

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """Only HMAC algorithms are supported for the shared server secret."""
        valid_algorithms = ["HS256", "HS384", "HS512"]
        if v not in valid_algorithms:
            raise ValueError(f"JWT algorithm must be one of {valid_algorithms}")
        return v

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        """Validate bcrypt cost is in the range bcrypt accepts."""
        if not 4 <= v <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")
        return v

    @field_validator("totp_valid_window", "backup_code_count")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Value must be non-negative")
        return v

    @model_validator(mode="after")
    def validate_token_lifetimes(self) -> "ApplicationSettings":
        """Refresh tokens must outlive access tokens."""
        if self.jwt_access_token_expire_minutes <= 0:
            raise ValueError("Access token lifetime must be positive")
        if self.refresh_token_lifetime <= self.access_token_lifetime:
            raise ValueError(
                "Refresh token lifetime must be longer than access token lifetime"
            )
        return self

    @property
    def access_token_lifetime(self) -> timedelta:
        """Access token lifetime as a timedelta."""
        return timedelta(minutes=self.jwt_access_token_expire_minutes)

    @property
    def refresh_token_lifetime(self) -> timedelta:
        """Refresh token lifetime as a timedelta."""
        return timedelta(days=self.jwt_refresh_token_expire_days)

    @property
    def database_url(self) -> str:
        """Construct async PostgreSQL database URL."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )


# Global settings instance
settings = ApplicationSettings()
