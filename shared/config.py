"""
Shared configuration management for the OIDC access engine.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OIDCSettings(BaseSettings):
    """Identity provider client settings, read from ``OIDC_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="OIDC_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Logging
    log_level: str = Field(default="info")

    # Provider
    base_url: str = Field(default="http://localhost:8000")
    client_id: str = Field(default="")
    client_secret: Optional[str] = Field(default=None)
    # JWK (JSON string) used to decrypt ID tokens when the provider encrypts them
    encryption_key: Optional[str] = Field(default=None)

    # HTTP
    http_timeout: float = Field(default=10.0)
    verify_ssl: bool = Field(default=True)

    # Discovery / JWKS cache; None keeps them for the client's lifetime
    metadata_ttl: Optional[float] = Field(default=None)
    # Minimum seconds between JWKS refetches forced by unknown key ids
    jwks_refresh_interval: float = Field(default=30.0)

    # Request authentication
    session_cookie_name: str = Field(default="user_session")
    userinfo_cache_ttl: float = Field(default=300.0)
    userinfo_cache_size: int = Field(default=1024)


def get_settings(**overrides) -> OIDCSettings:
    """Load settings from the environment, with explicit overrides."""
    return OIDCSettings(**overrides)
