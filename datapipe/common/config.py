"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import Any, List


class Settings(BaseSettings):
    """
    Host settings loaded from environment variables.

    Uses Pydantic BaseSettings to read from .env files or the system environment.
    Field names are case-insensitive when reading from env (e.g., HOST_URL overrides host_url).
    """

    # Application Metadata
    app_name: str = "Simple Data Pipe"
    app_version: str = "1.0.0"
    debug: bool = False  # Enable verbose logging if True

    # HTTP surface
    host_url: str = Field(default="http://localhost:8082", description="Public URL of the host, used for OAuth callbacks")
    api_host: str = Field(default="0.0.0.0", description="Bind address of the HTTP API")
    api_port: int = Field(default=8082, description="Port of the HTTP API")

    # Connectors
    connector_modules: List[str] = Field(
        default=["connectors.yahoo_connector", "connectors.yahoo_oauth2_connector"],
        description="Modules scanned for connector classes at startup"
    )
    http_timeout: float = Field(default=30.0, description="Timeout in seconds for data source calls")

    # Staging
    staging_backend: str = Field(default="memory", description="Staging store backend: memory or file")
    staging_directory: str = Field(default="./staging", description="Root directory of the file staging store")

    # Pipe runs
    default_polling_interval: int = Field(default=3600, description="Default interval between scheduled pipe runs in seconds")
    max_run_history: int = Field(default=20, description="Number of runs kept per pipe")

    @field_validator("debug", mode="before")
    @classmethod
    def _accept_debug_patterns(cls, value: Any) -> Any:
        # DEBUG=* and DEBUG=sdp-pipe-run switch on debug logging as well
        if isinstance(value, str) and value.strip().lower() in ("*", "sdp-pipe-run"):
            return True
        return value

    @property
    def auth_callback_url(self) -> str:
        """OAuth redirect target shared by all connectors"""
        return self.host_url.rstrip("/") + "/authCallback"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
