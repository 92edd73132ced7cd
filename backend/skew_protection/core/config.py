"""Configuration and settings"""

from typing import Literal, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables (prefixed with SKEW_)"""

    model_config = SettingsConfigDict(
        env_prefix="SKEW_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    storage_driver: Literal["memory", "fs"] = "fs"
    storage_base: str = Field(default="./.skew-storage")
    manifest_key: str = "version-manifest.json"
    storage_timeout: float = 5.0

    # Retention
    retention_days: float = Field(default=7, gt=0)
    max_versions: int = Field(default=10, ge=1)
    fingerprint_mode: Literal["filename", "content"] = "filename"

    # Build output
    assets_prefix: str = "/_assets"
    public_dir: str = "./.output/public"
    build_id: Optional[str] = None

    # Platform strategy
    platform: Literal["generic", "edge", "serverless"] = "generic"
    edge_origin_template: str = "https://{version}.preview.localhost"
    forward_timeout: float = 10.0

    # Identity signals
    cookie_name: str = "__nkpv"
    cookie_max_age: int = 60 * 60 * 24 * 60
    cookie_same_site: Literal["lax", "strict", "none"] = "strict"
    cookie_secure: bool = False
    cookie_http_only: bool = False
    identity_header: str = "x-deployment-id"
    identity_query_param: str = "dpl"

    # Realtime
    realtime_enabled: bool = True
    heartbeat_interval: float = 30.0
    watch_interval: float = 10.0
    session_queue_size: int = 32

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    api_key: str = ""
    debug: bool = False

    # API Configuration
    api_title: str = "Skew Protection API"
    api_version: str = "0.1.0"

    @property
    def assets_dir_name(self) -> str:
        """Assets prefix without surrounding slashes, as used in storage keys"""
        return self.assets_prefix.strip("/")


def get_settings() -> Settings:
    return Settings()
