"""DAMP Orchestrator MCP server implementation using FastMCP 2."""

import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from fastmcp import FastMCP

from damp_orchestrator.config import get_settings
from damp_orchestrator.managers.database_operations import get_dump_file_extension
from damp_orchestrator.managers.service_state_manager import InstallOptions
from damp_orchestrator.mcp_tools import (
    BatchOutput,
    ContainerLogsInput,
    ContainerLogsOutput,
    ContainerRefInput,
    ContainerStateOutput,
    DatabaseDumpInput,
    DatabaseDumpOutput,
    DatabaseListInput,
    DatabaseListOutput,
    DatabaseRestoreInput,
    EventMonitorOutput,
    HealthCheckResponse,
    LogLine,
    MetricsOutput,
    OperationOutput,
    ProjectCreateInput,
    ProjectDeleteInput,
    ProjectListOutput,
    ProjectReorderInput,
    ProjectUpdateInput,
    PruneInput,
    ResourceDeleteInput,
    ResourceListOutput,
    ServiceActionInput,
    ServiceInstallInput,
    ServiceListOutput,
    ServiceStateInput,
    ServiceUninstallInput,
)
from damp_orchestrator.results import Result
from damp_orchestrator.runtime import Runtime, build_runtime
from damp_orchestrator.utils import get_logger, setup_logging

logger = get_logger(__name__)

SERVER_VERSION = "0.1.0"

_runtime: Runtime | None = None


def get_runtime() -> Runtime:
    """
    Get the runtime built by the server lifespan.

    Raises:
        RuntimeError: If the server has not started
    """
    if _runtime is None:
        raise RuntimeError("DAMP Orchestrator runtime is not initialized")
    return _runtime


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Lifespan context manager for startup and shutdown tasks."""
    global _runtime
    settings = get_settings()

    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    logger.info("Starting DAMP Orchestrator server", extra={"version": SERVER_VERSION})

    try:
        runtime = build_runtime(settings)
        await runtime.start()
    except Exception as e:
        logger.error("Failed to initialize runtime", extra={"error": str(e)})
        raise
    _runtime = runtime

    try:
        yield
    finally:
        logger.info("Shutting down DAMP Orchestrator server")
        await runtime.shutdown()
        _runtime = None
        logger.info("DAMP Orchestrator server stopped")


mcp = FastMCP("DAMP Orchestrator", lifespan=lifespan)


def _operation(result: Result) -> OperationOutput:
    data = result.data
    if hasattr(data, "to_dict"):
        data = data.to_dict()
    message = data.get("message") if isinstance(data, dict) else None
    return OperationOutput(
        success=result.success,
        message=message,
        data=data if isinstance(data, dict) else None,
        error=result.error,
    )


@mcp.tool()
async def health() -> HealthCheckResponse:
    """
    Health check endpoint to verify server status and Docker connectivity.

    Returns:
        HealthCheckResponse with status and Docker connection info
    """
    runtime = get_runtime()
    docker_connected = await runtime.container_manager.is_docker_available()
    return HealthCheckResponse(
        status="healthy" if docker_connected else "degraded",
        docker_connected=docker_connected,
        version=SERVER_VERSION,
    )


# ========== Services ==========


@mcp.tool()
async def service_list() -> ServiceListOutput:
    """List every catalog service with its live container state."""
    runtime = get_runtime()
    services = await runtime.service_state_manager.get_all_service_states()
    return ServiceListOutput(
        services=services,
        caddy_cert_installed=await runtime.service_state_manager.get_caddy_cert_installed(),
    )


@mcp.tool()
async def service_install(input_data: ServiceInstallInput) -> OperationOutput:
    """
    Install a shared service: pull, create, start and run its post-install hook.

    Args:
        input_data: Service ID and optional configuration overrides

    Returns:
        OperationOutput with container_id and the actual ports
    """
    logger.info("Installing service", extra={"service_id": input_data.service_id})
    runtime = get_runtime()
    async with runtime.shutdown_coordinator.track_operation():
        result = await runtime.service_state_manager.install_service(
            input_data.service_id,
            InstallOptions(
                custom_config=input_data.custom_config(),
                start_immediately=input_data.start_immediately,
            ),
        )
    return _operation(result)


@mcp.tool()
async def service_uninstall(input_data: ServiceUninstallInput) -> OperationOutput:
    """Remove a shared service container and, by default, its volumes."""
    runtime = get_runtime()
    async with runtime.shutdown_coordinator.track_operation():
        result = await runtime.service_state_manager.uninstall_service(
            input_data.service_id, remove_volumes=input_data.remove_volumes
        )
    return _operation(result)


@mcp.tool()
async def service_start(input_data: ServiceActionInput) -> OperationOutput:
    """Start an installed service."""
    runtime = get_runtime()
    async with runtime.shutdown_coordinator.track_operation():
        result = await runtime.service_state_manager.start_service(input_data.service_id)
    return _operation(result)


@mcp.tool()
async def service_stop(input_data: ServiceActionInput) -> OperationOutput:
    """Stop an installed service."""
    runtime = get_runtime()
    async with runtime.shutdown_coordinator.track_operation():
        result = await runtime.service_state_manager.stop_service(input_data.service_id)
    return _operation(result)


@mcp.tool()
async def service_restart(input_data: ServiceActionInput) -> OperationOutput:
    """Restart an installed service."""
    runtime = get_runtime()
    async with runtime.shutdown_coordinator.track_operation():
        result = await runtime.service_state_manager.restart_service(input_data.service_id)
    return _operation(result)


@mcp.tool()
async def service_update(input_data: ServiceActionInput) -> OperationOutput:
    """Recreate a service whose container drifted from its definition."""
    runtime = get_runtime()
    async with runtime.shutdown_coordinator.track_operation():
        result = await runtime.resource_reconciler.update_service(input_data.service_id)
    return _operation(result)


@mcp.tool()
async def service_state(input_data: ServiceStateInput) -> ContainerStateOutput:
    """
    Live state of a service container, or of a project's bundled service.

    Raises:
        ValueError: For an unknown service ID
    """
    runtime = get_runtime()
    state = await runtime.service_state_manager.get_service_container_state(
        input_data.service_id, input_data.project_id
    )
    if state is None:
        raise ValueError(f"Service {input_data.service_id} not found")
    return ContainerStateOutput(**state.to_dict())


# ========== Projects ==========


@mcp.tool()
async def project_list() -> ProjectListOutput:
    """List projects in display order."""
    projects = await get_runtime().project_state_manager.get_all_projects()
    return ProjectListOutput(projects=[p.to_dict() for p in projects])


@mcp.tool()
async def project_create(input_data: ProjectCreateInput) -> OperationOutput:
    """
    Create a project: volume, devcontainer files, copy, hosts entry and proxy route.

    Progress stages are written to the server log.

    Args:
        input_data: Project name, location and PHP/Node settings

    Returns:
        OperationOutput with the persisted project
    """
    logger.info("Creating project", extra={"project_name": input_data.name, "path": input_data.path})
    runtime = get_runtime()

    def on_progress(event: Any) -> None:
        logger.info(
            "Project creation progress",
            extra={"stage": event.stage, "detail": event.message, "percentage": event.percentage},
        )

    async with runtime.shutdown_coordinator.track_operation():
        result = await runtime.project_state_manager.create_project(
            input_data.to_input(), on_progress
        )
    return _operation(result)


@mcp.tool()
async def project_update(input_data: ProjectUpdateInput) -> OperationOutput:
    """Update project settings, optionally regenerating devcontainer files."""
    runtime = get_runtime()
    async with runtime.shutdown_coordinator.track_operation():
        result = await runtime.project_state_manager.update_project(input_data.to_input())
    return _operation(result)


@mcp.tool()
async def project_delete(input_data: ProjectDeleteInput) -> OperationOutput:
    """Delete a project record and optionally its volume and folder."""
    runtime = get_runtime()
    async with runtime.shutdown_coordinator.track_operation():
        result = await runtime.project_state_manager.delete_project(
            input_data.id,
            remove_volume=input_data.remove_volume,
            remove_folder=input_data.remove_folder,
        )
    return _operation(result)


@mcp.tool()
async def project_reorder(input_data: ProjectReorderInput) -> OperationOutput:
    """Persist a new project display order."""
    result = await get_runtime().project_state_manager.reorder_projects(input_data.project_ids)
    return _operation(result)


@mcp.tool()
async def project_state(input_data: ContainerRefInput) -> ContainerStateOutput:
    """
    Live state of a project's devcontainer, by project ID.

    Raises:
        ValueError: For an unknown project ID
    """
    state = await get_runtime().project_state_manager.get_project_container_state(input_data.ref)
    if state is None:
        raise ValueError(f"Project {input_data.ref} not found")
    return ContainerStateOutput(**state.to_dict())


# ========== Resources ==========


@mcp.tool()
async def resource_list() -> ResourceListOutput:
    """List managed containers and volumes with orphan and drift flags."""
    resources = await get_runtime().resource_reconciler.get_all_resources()
    return ResourceListOutput(
        resources=[r.to_dict() for r in resources],
        orphan_count=sum(1 for r in resources if r.is_orphan),
    )


@mcp.tool()
async def resource_delete(input_data: ResourceDeleteInput) -> OperationOutput:
    """Force-remove one container or remove one volume."""
    runtime = get_runtime()
    async with runtime.shutdown_coordinator.track_operation():
        await runtime.resource_reconciler.delete_resource(input_data.type, input_data.id)
    return OperationOutput(success=True, message=f"Deleted {input_data.type} {input_data.id}")


@mcp.tool()
async def resource_prune(input_data: PruneInput) -> BatchOutput:
    """Delete orphaned resources; partial success is reported per item."""
    runtime = get_runtime()
    async with runtime.shutdown_coordinator.track_operation():
        result = await runtime.resource_reconciler.prune_orphans(
            input_data.container_ids, input_data.volume_names
        )
    return BatchOutput(**result.to_dict())


# ========== Containers ==========


@mcp.tool()
async def container_state(input_data: ContainerRefInput) -> ContainerStateOutput:
    """Inspect a container; a missing container reports exists=false."""
    state = await get_runtime().container_manager.get_container_state(input_data.ref)
    return ContainerStateOutput(**state.to_dict())


@mcp.tool()
async def container_logs(input_data: ContainerLogsInput) -> ContainerLogsOutput:
    """
    Collect a bounded window of container logs.

    The last ``tail`` lines are returned together with whatever arrives
    during ``follow_s`` seconds, up to ``max_lines``.
    """
    runtime = get_runtime()
    lines: list[LogLine] = []
    full = asyncio.Event()

    def on_line(line: str, stream: str) -> None:
        if len(lines) >= input_data.max_lines:
            full.set()
            return
        lines.append(LogLine(stream=stream, line=line))

    handle = await runtime.container_manager.stream_logs(
        input_data.ref, on_line, tail=input_data.tail
    )
    try:
        await asyncio.wait_for(full.wait(), timeout=input_data.follow_s)
    except asyncio.TimeoutError:
        pass
    finally:
        await handle.aclose()

    return ContainerLogsOutput(
        container_id=handle.container_id, lines=lines, truncated=full.is_set()
    )


# ========== Databases ==========


@mcp.tool()
async def database_list(input_data: DatabaseListInput) -> DatabaseListOutput:
    """List user databases in a running database service."""
    databases = await get_runtime().database_operations.list_databases(
        input_data.service_id, input_data.project_id
    )
    return DatabaseListOutput(service_id=input_data.service_id, databases=databases)


@mcp.tool()
async def database_dump(input_data: DatabaseDumpInput) -> DatabaseDumpOutput:
    """Dump a database to a host file."""
    runtime = get_runtime()
    async with runtime.shutdown_coordinator.track_operation():
        dump = await runtime.database_operations.dump_database(
            input_data.service_id, input_data.database, input_data.project_id
        )
    await asyncio.to_thread(Path(input_data.output_path).write_bytes, dump)
    return DatabaseDumpOutput(
        path=input_data.output_path,
        size_bytes=len(dump),
        extension=get_dump_file_extension(input_data.service_id),
    )


@mcp.tool()
async def database_restore(input_data: DatabaseRestoreInput) -> OperationOutput:
    """Restore a database from a host dump file."""
    runtime = get_runtime()
    dump = await asyncio.to_thread(Path(input_data.input_path).read_bytes)
    async with runtime.shutdown_coordinator.track_operation():
        await runtime.database_operations.restore_database(
            input_data.service_id, input_data.database, dump, input_data.project_id
        )
    return OperationOutput(success=True, message=f"Database {input_data.database} restored")


# ========== Monitoring ==========


@mcp.tool()
async def events_status() -> EventMonitorOutput:
    """Docker event subscription status and the most recent container events."""
    monitor = get_runtime().event_monitor
    return EventMonitorOutput(
        **monitor.status.to_dict(),
        recent_events=[event.to_dict() for event in monitor.recent_events(50)],
    )


@mcp.tool()
async def metrics() -> MetricsOutput:
    """Prometheus metrics for container operations, pulls and reconnects."""
    return MetricsOutput(metrics=get_runtime().metrics.get_metrics().decode("utf-8"))


def main() -> None:
    """Main entry point for the DAMP Orchestrator server."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)

    logger.info(
        "Starting server",
        extra={
            "transport": settings.transport_mode,
            "host": settings.host if settings.transport_mode != "stdio" else "N/A",
            "port": settings.port if settings.transport_mode != "stdio" else "N/A",
        },
    )

    try:
        run_kwargs: dict[str, Any] = {"transport": settings.transport_mode}
        if settings.transport_mode in ("sse", "streamable-http"):
            run_kwargs["host"] = settings.host
            run_kwargs["port"] = settings.port
            run_kwargs["path"] = settings.path

        mcp.run(**run_kwargs)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", extra={"error": str(e)})
        sys.exit(1)


if __name__ == "__main__":
    main()
