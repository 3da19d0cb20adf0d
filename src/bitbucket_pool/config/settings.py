"""Settings and configuration management for the Bitbucket pool."""

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="POOL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Pool identity
    prefix: str = Field(
        default="bbpool",
        description="Name prefix shared by every pool container",
    )

    network_name: str | None = Field(
        default=None,
        description="Docker network for pool containers (defaults to '<prefix>-network')",
    )

    # Pool sizing
    max_pool_size: int = Field(
        default=6,
        ge=1,
        description="Hard ceiling on prefix-matching containers",
    )

    initial_pool_size: int = Field(
        default=2,
        ge=0,
        description="Number of unclaimed members ensured at startup",
    )

    # Lease and reclaim
    lease_duration_s: int = Field(
        default=3600,
        ge=1,
        description="Validity window in seconds granted to a claimed member",
    )

    reclaim_interval_s: float = Field(
        default=20.0,
        gt=0,
        description="Interval in seconds between reclaim passes",
    )

    stop_timeout_s: int = Field(
        default=10,
        ge=0,
        description="Grace period in seconds before a stopping container is killed",
    )

    # Bootstrap supervision
    bootstrap_retry_s: float = Field(
        default=60.0,
        ge=0,
        description="Delay in seconds before retrying a failed bootstrap",
    )

    bootstrap_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Maximum bootstrap attempts before giving up",
    )

    # Docker configuration
    docker_host: str | None = Field(
        default=None,
        description="Docker daemon host URL (defaults to Docker's standard detection)",
    )

    image: str = Field(
        default="atlassian/bitbucket-server",
        description="Bitbucket Server image repository",
    )

    data_path: str = Field(
        default="/var/atlassian/application-data/bitbucket",
        description="Bitbucket home directory inside the container",
    )

    http_container_port: int = Field(default=7990, description="Bitbucket HTTP port")

    ssh_container_port: int = Field(default=7999, description="Bitbucket SSH port")

    # Bitbucket configuration
    app_version: str = Field(
        default="latest",
        description="Bitbucket version: 'latest' or MAJOR.MINOR[.PATCH]",
    )

    app_host: str = Field(
        default="localhost",
        description="Host on which published Bitbucket ports are reachable",
    )

    app_username: str = Field(default="admin", description="Bitbucket admin username")

    app_password: str = Field(default="admin", description="Bitbucket admin password")

    jvm_support_recommended_args: str = Field(
        default="",
        description="Value of JVM_SUPPORT_RECOMMENDED_ARGS passed to Bitbucket",
    )

    elasticsearch_enabled: str = Field(
        default="false",
        description="Value of ELASTICSEARCH_ENABLED passed to Bitbucket",
    )

    startup_poll_interval_s: float = Field(
        default=1.0,
        gt=0,
        description="Interval in seconds between startup status polls",
    )

    startup_timeout_s: float = Field(
        default=1200.0,
        gt=0,
        description="Deadline in seconds for Bitbucket to report STARTED",
    )

    startup_request_timeout_s: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for a single Bitbucket API request",
    )

    # Add-on installation
    addon_path: str | None = Field(
        default=None,
        description="Path to the add-on .jar file installed into every member",
    )

    license_path: str | None = Field(
        default=None,
        description="Path to the text file holding the add-on license",
    )

    addon_key: str = Field(
        default="io.reconquest.snake",
        description="Plugin key the license is submitted under",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log format (json or text)",
    )

    # Server configuration
    host: str = Field(
        default="0.0.0.0",
        description="Server host to bind to",
    )

    port: int = Field(
        default=8080,
        description="Server port to bind to",
    )

    base_path: str = Field(
        default="",
        description="Path prefix for every HTTP route (e.g. '/api')",
    )

    @property
    def lease_duration(self) -> timedelta:
        """Lease duration as a timedelta."""
        return timedelta(seconds=self.lease_duration_s)

    @property
    def resolved_network_name(self) -> str:
        """Network name, falling back to one derived from the prefix."""
        return self.network_name or f"{self.prefix}-network"

    @property
    def normalized_base_path(self) -> str:
        """Base path with a leading slash and no trailing slash ('' for root)."""
        path = self.base_path.strip().strip("/")
        return f"/{path}" if path else ""


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
