from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service configuration from COURIER_* env vars and an optional .env file."""
    model_config = SettingsConfigDict(
        env_prefix="COURIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    workspace: str = "./workspace"
    proxy_url: str = "http://localhost:5000/proxy"
    # When set, history/collections go to this backend instead of the workspace
    backend_url: Optional[str] = None

    # Default identity attached to recorded requests
    user_id: Optional[str] = "local"
    access_token: Optional[str] = None

    request_timeout_s: float = 30.0
    log_level: str = "INFO"  # DEBUG/INFO/WARNING/ERROR


def get_settings() -> Settings:
    return Settings()
