"""
Application settings for CertAnchor Backend.
Values come from environment variables or a local .env file.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide configuration, loaded once at startup."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Service
    app_name: str = "CertAnchor Backend"
    log_level: str = "INFO"
    uploads_dir: str = "uploads"
    upload_sweep_hour: int = Field(default=0, ge=0, le=23)
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False

    # Database
    mongodb_url: str = "mongodb://localhost:27017"
    database_name: str = "certanchor"

    # Blockchain
    rpc_url: str = "https://rpc-amoy.polygon.technology"
    chain_id: int = 80002
    contract_address: Optional[str] = None
    private_key: Optional[str] = None
    account_address: Optional[str] = None
    issuer_role: Optional[str] = None
    network: str = "amoy.polygonscan.com"
    chain_retry_attempts: int = Field(default=3, ge=1)
    chain_retry_delay: float = Field(default=2.0, ge=0)
    gas_limit: Optional[int] = None

    # Certificates
    cert_number_min_length: int = 12
    cert_number_max_length: int = 20
    encryption_key: str = "change-me"
    verification_base_url: str = "https://verify.certanchor.io/"

    # Object storage
    bucket_name: str = "certanchor-backups"
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    signed_url_ttl: int = 3600
    backup_timezone: str = "America/New_York"


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
