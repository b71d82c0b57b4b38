"""Settings and configuration management for DAMP Orchestrator."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DAMP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # State database configuration
    state_db: str = Field(
        default="./damp-state.db",
        description="Path to SQLite state database (projects, service states, settings)",
    )

    # Docker configuration
    docker_host: str | None = Field(
        default=None,
        description="Docker daemon host URL (defaults to Docker's standard detection)",
    )

    docker_ping_timeout_ms: int = Field(
        default=3000,
        description="Timeout in milliseconds for daemon reachability pings",
    )

    network_name: str = Field(
        default="damp-network",
        description="Shared bridge network every managed container is attached to",
    )

    # Container lifecycle configuration
    stop_timeout_s: int = Field(
        default=10,
        description="Grace period in seconds before a stopping container is killed",
    )

    running_wait_timeout_s: float = Field(
        default=60.0,
        description="Maximum time in seconds to wait for a container to reach running",
    )

    running_wait_interval_s: float = Field(
        default=1.0,
        description="Polling interval in seconds while waiting for a container to run",
    )

    image_refresh_days: int = Field(
        default=7,
        description="Days after which :latest images are pulled again",
    )

    port_scan_attempts: int = Field(
        default=100,
        description="Number of ports scanned upward when a desired port is taken",
    )

    max_archive_bytes: int = Field(
        default=100 * 1024 * 1024,
        description="Maximum size in bytes of a file extracted from a container archive",
    )

    log_tail_lines: int = Field(
        default=100,
        description="Number of historical log lines sent before following a container",
    )

    # Volume configuration
    helper_image: str = Field(
        default="alpine:latest",
        description="Image used for helper containers that copy data into volumes",
    )

    sync_image: str = Field(
        default="instrumentisto/rsync-ssh:latest",
        description="Image used for rsync based volume synchronisation",
    )

    volume_copy_timeout_s: int = Field(
        default=300,
        description="Timeout in seconds for copying a folder into a volume",
    )

    volume_sync_timeout_s: int = Field(
        default=1800,
        description="Timeout in seconds for rsync based volume synchronisation",
    )

    # Project configuration
    forwarded_port: int = Field(
        default=8443,
        description="Port forwarded from project devcontainers",
    )

    hosts_file: str = Field(
        default="/etc/hosts",
        description="Hosts file updated with project domains",
    )

    laravel_image: str = Field(
        default="composer:latest",
        description="Image used to scaffold fresh Laravel projects into a volume",
    )

    laravel_install_timeout_s: int = Field(
        default=1800,
        description="Timeout in seconds for scaffolding a Laravel project",
    )

    # Event monitor configuration
    event_ping_interval_s: float = Field(
        default=30.0,
        description="Interval in seconds between daemon health pings",
    )

    event_backoff_base_s: float = Field(
        default=1.0,
        description="Initial reconnect delay in seconds",
    )

    event_backoff_max_s: float = Field(
        default=64.0,
        description="Maximum reconnect delay in seconds",
    )

    event_backoff_jitter: float = Field(
        default=0.2,
        description="Relative random jitter applied to reconnect delays",
    )

    # Certificate configuration
    cert_wait_timeout_s: float = Field(
        default=30.0,
        description="Maximum time in seconds to wait for the proxy root certificate",
    )

    cert_wait_interval_s: float = Field(
        default=2.0,
        description="Polling interval in seconds while waiting for the root certificate",
    )

    # Shutdown configuration
    drain_grace_s: int = Field(
        default=10,
        description="Grace period in seconds for closing subscriptions during shutdown",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    log_format: str = Field(
        default="json",
        description="Log format (json or text)",
    )

    # Server configuration
    transport_mode: Literal["stdio", "sse", "streamable-http"] = Field(
        default="stdio",
        description="Transport protocol for the MCP server (stdio, sse, or streamable-http)",
    )

    host: str = Field(
        default="127.0.0.1",
        description="Server host to bind to",
    )

    port: int = Field(
        default=8765,
        description="Server port to bind to",
    )

    path: str = Field(
        default="/mcp",
        description="Path for HTTP-based transports (sse or streamable-http)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
