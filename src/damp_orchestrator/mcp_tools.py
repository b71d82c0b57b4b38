"""MCP tool input and output models."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from damp_orchestrator.project_config import (
    BundledService,
    CreateProjectInput,
    LaravelOptions,
    ProjectType,
    UpdateProjectInput,
)
from damp_orchestrator.service_config import CustomConfig


class OperationOutput(BaseModel):
    """Outcome of a state manager operation."""

    success: bool = Field(..., description="Whether the operation succeeded")
    message: Optional[str] = Field(None, description="Human-readable outcome")
    data: Optional[Dict[str, Any]] = Field(None, description="Operation-specific payload")
    error: Optional[str] = Field(None, description="Error message when unsuccessful")


class HealthCheckResponse(BaseModel):
    """Health check response model."""

    status: str
    docker_connected: bool
    database_initialized: bool = True
    version: str


# Services


class ServiceActionInput(BaseModel):
    """Input model for start, stop, restart and update tools."""

    service_id: str = Field(..., description="Service ID, e.g. mysql or caddy")


class ServiceInstallInput(BaseModel):
    """Input model for service_install tool."""

    service_id: str = Field(..., description="Service ID to install")
    ports: Optional[List[List[int]]] = Field(
        None, description="Replacement [host, container] port pairs"
    )
    environment_vars: Optional[List[str]] = Field(
        None, description="Extra KEY=VALUE variables appended to the defaults"
    )
    volume_bindings: Optional[List[str]] = Field(
        None, description="Replacement volume:path bindings"
    )
    start_immediately: bool = Field(default=True, description="Start after creation")

    def custom_config(self) -> Optional[CustomConfig]:
        return CustomConfig.from_dict(
            {
                key: value
                for key, value in {
                    "ports": self.ports,
                    "environment_vars": self.environment_vars,
                    "volume_bindings": self.volume_bindings,
                }.items()
                if value is not None
            }
        )


class ServiceUninstallInput(BaseModel):
    """Input model for service_uninstall tool."""

    service_id: str = Field(..., description="Service ID to uninstall")
    remove_volumes: bool = Field(default=True, description="Also remove the service data")


class ServiceStateInput(BaseModel):
    """Input model for service_state tool."""

    service_id: str = Field(..., description="Service ID")
    project_id: Optional[str] = Field(None, description="Owning project for a bundled service")


class ServiceListOutput(BaseModel):
    """Output model for service_list tool."""

    services: List[Dict[str, Any]] = Field(..., description="Definitions with live state")
    caddy_cert_installed: bool = Field(..., description="Whether the proxy CA is trusted")


# Containers


class ContainerStateOutput(BaseModel):
    """Live container state; exists is false for a missing container."""

    exists: bool
    running: bool = False
    container_id: Optional[str] = None
    container_name: Optional[str] = None
    state: Optional[str] = None
    ports: List[List[int]] = Field(default_factory=list)
    health_status: str = "none"
    environment_vars: List[str] = Field(default_factory=list)


class ContainerRefInput(BaseModel):
    """Input model for container_state tool."""

    ref: str = Field(..., description="Container ID or name")


class ContainerLogsInput(BaseModel):
    """Input model for container_logs tool."""

    ref: str = Field(..., description="Container ID or name")
    tail: int = Field(default=100, ge=0, description="Historical lines to include")
    follow_s: float = Field(
        default=1.0, ge=0, le=30, description="Seconds to keep collecting new lines"
    )
    max_lines: int = Field(default=1000, ge=1, le=10000, description="Maximum lines returned")


class LogLine(BaseModel):
    stream: str
    line: str


class ContainerLogsOutput(BaseModel):
    """Output model for container_logs tool."""

    container_id: str
    lines: List[LogLine]
    truncated: bool = Field(default=False, description="Whether max_lines was reached")


# Projects


class ProjectCreateInput(BaseModel):
    """Input model for project_create tool."""

    name: str = Field(..., description="Project name, sanitized for domains and volumes")
    path: str = Field(..., description="Host folder of the project or its parent")
    type: Optional[ProjectType] = Field(None, description="basic-php, laravel or existing")
    php_version: str = Field(default="8.3", description="PHP version")
    php_variant: str = Field(default="fpm-apache", description="PHP image variant")
    node_version: str = Field(default="lts", description="Node.js version")
    php_extensions: List[str] = Field(default_factory=list, description="Extra PHP extensions")
    enable_claude_ai: bool = Field(default=False, description="Add the Claude Code feature")
    overwrite_existing: bool = Field(default=False, description="Overwrite .devcontainer")
    laravel_options: Optional[Dict[str, Any]] = Field(
        None, description="Starter kit, authentication and testing options"
    )
    bundled_services: List[Dict[str, Any]] = Field(
        default_factory=list, description="Per-project services with optional credentials"
    )

    def to_input(self) -> CreateProjectInput:
        return CreateProjectInput(
            name=self.name,
            path=self.path,
            type=self.type,
            php_version=self.php_version,
            php_variant=self.php_variant,
            node_version=self.node_version,
            php_extensions=list(self.php_extensions),
            enable_claude_ai=self.enable_claude_ai,
            overwrite_existing=self.overwrite_existing,
            laravel_options=LaravelOptions.from_dict(self.laravel_options),
            bundled_services=[BundledService.from_dict(item) for item in self.bundled_services],
        )


class ProjectUpdateInput(BaseModel):
    """Input model for project_update tool."""

    id: str = Field(..., description="Project ID")
    name: Optional[str] = None
    domain: Optional[str] = None
    php_version: Optional[str] = None
    php_variant: Optional[str] = None
    node_version: Optional[str] = None
    php_extensions: Optional[List[str]] = None
    enable_claude_ai: Optional[bool] = None
    regenerate_files: bool = Field(default=False, description="Rewrite devcontainer files")

    def to_input(self) -> UpdateProjectInput:
        return UpdateProjectInput(**self.model_dump())


class ProjectDeleteInput(BaseModel):
    """Input model for project_delete tool."""

    id: str = Field(..., description="Project ID")
    remove_volume: bool = Field(default=False, description="Remove the project volume")
    remove_folder: bool = Field(default=False, description="Remove the host folder")


class ProjectReorderInput(BaseModel):
    project_ids: List[str] = Field(..., description="Project IDs in display order")


class ProjectListOutput(BaseModel):
    projects: List[Dict[str, Any]]


# Resources


class ResourceListOutput(BaseModel):
    """Output model for resource_list tool."""

    resources: List[Dict[str, Any]]
    orphan_count: int


class ResourceDeleteInput(BaseModel):
    """Input model for resource_delete tool."""

    type: str = Field(..., description="container or volume")
    id: str = Field(..., description="Container ID or volume name")


class PruneInput(BaseModel):
    """Input model for resource_prune tool; omit both lists to prune every orphan."""

    container_ids: Optional[List[str]] = None
    volume_names: Optional[List[str]] = None


class BatchOutput(BaseModel):
    """Per-item outcome of a batch deletion."""

    deleted: List[str]
    failed: List[str]
    errors: Dict[str, str] = Field(default_factory=dict)


# Databases


class DatabaseListInput(BaseModel):
    service_id: str = Field(..., description="mysql, mariadb, postgresql or mongodb")
    project_id: Optional[str] = Field(None, description="Owning project for a bundled database")


class DatabaseListOutput(BaseModel):
    service_id: str
    databases: List[str]


class DatabaseDumpInput(BaseModel):
    """Input model for database_dump tool."""

    service_id: str = Field(..., description="mysql, mariadb, postgresql or mongodb")
    database: str = Field(..., description="Database name")
    output_path: str = Field(..., description="Host file the dump is written to")
    project_id: Optional[str] = None


class DatabaseDumpOutput(BaseModel):
    path: str
    size_bytes: int
    extension: str


class DatabaseRestoreInput(BaseModel):
    """Input model for database_restore tool."""

    service_id: str = Field(..., description="mysql, mariadb, postgresql or mongodb")
    database: str = Field(..., description="Target database name")
    input_path: str = Field(..., description="Host file holding the dump")
    project_id: Optional[str] = None


# Monitoring


class EventMonitorOutput(BaseModel):
    """Output model for events_status tool."""

    connected: bool
    attempts: int
    last_error: Optional[str] = None
    recent_events: List[Dict[str, Any]] = Field(default_factory=list)


class MetricsOutput(BaseModel):
    """Output model for metrics tool."""

    metrics: str = Field(..., description="Prometheus text exposition")
