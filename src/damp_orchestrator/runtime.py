"""Explicit wiring of every manager, built once per process."""

from dataclasses import dataclass

from damp_orchestrator.config import Settings, get_settings
from damp_orchestrator.managers.certificate_bootstrap import CertificateBootstrap
from damp_orchestrator.managers.container_manager import ContainerManager
from damp_orchestrator.managers.database_operations import DatabaseOperations
from damp_orchestrator.managers.event_monitor import EventMonitor
from damp_orchestrator.managers.hosts_manager import HostsManager
from damp_orchestrator.managers.laravel_installer import LaravelInstaller
from damp_orchestrator.managers.port_resolver import PortResolver
from damp_orchestrator.managers.project_state_manager import ProjectStateManager
from damp_orchestrator.managers.proxy_sync import ProxySync
from damp_orchestrator.managers.resource_reconciler import ResourceReconciler
from damp_orchestrator.managers.service_state_manager import ServiceStateManager
from damp_orchestrator.managers.shutdown_coordinator import ShutdownCoordinator
from damp_orchestrator.managers.trust_store import TrustStoreInstaller
from damp_orchestrator.managers.volume_manager import VolumeManager
from damp_orchestrator.models.database import DatabaseManager
from damp_orchestrator.service_definitions import ServiceId
from damp_orchestrator.utils import get_logger
from damp_orchestrator.utils.audit_logger import AuditLogger
from damp_orchestrator.utils.cleanup import best_effort
from damp_orchestrator.utils.docker_client import DockerClientManager
from damp_orchestrator.utils.metrics_collector import MetricsCollector

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Every long-lived collaborator, constructed by :func:`build_runtime`."""

    settings: Settings
    docker_client_manager: DockerClientManager
    db_manager: DatabaseManager
    metrics: MetricsCollector
    audit_logger: AuditLogger
    container_manager: ContainerManager
    volume_manager: VolumeManager
    hosts_manager: HostsManager
    proxy_sync: ProxySync
    certificate_bootstrap: CertificateBootstrap
    service_state_manager: ServiceStateManager
    project_state_manager: ProjectStateManager
    database_operations: DatabaseOperations
    resource_reconciler: ResourceReconciler
    event_monitor: EventMonitor
    shutdown_coordinator: ShutdownCoordinator

    async def start(self) -> None:
        """
        Prepare persistent state and start background subscriptions.

        A daemon that is down at startup is tolerated: the network is created
        on the next container creation and the event monitor keeps retrying.
        """
        await self.db_manager.create_tables()
        async with best_effort("ensure Docker network", network=self.settings.network_name):
            await self.container_manager.ensure_network()
        await self.event_monitor.start()
        logger.info("Runtime started")

    async def shutdown(self) -> None:
        await self.shutdown_coordinator.initiate_shutdown()


def build_runtime(
    settings: Settings | None = None,
    db_manager: DatabaseManager | None = None,
    docker_client_manager: DockerClientManager | None = None,
) -> Runtime:
    """
    Construct and wire every manager.

    Args:
        settings: Application settings
        db_manager: Database manager, e.g. an in-memory one in tests
        docker_client_manager: Docker client owner, e.g. wrapping a mock

    Returns:
        Runtime holding all collaborators
    """
    settings = settings or get_settings()
    docker_client_manager = docker_client_manager or DockerClientManager(settings)
    db_manager = db_manager or DatabaseManager(settings)
    docker_client = docker_client_manager.get_client()

    metrics = MetricsCollector()
    audit_logger = AuditLogger()

    volume_manager = VolumeManager(docker_client, settings, metrics)
    container_manager = ContainerManager(
        docker_client,
        db_manager,
        settings,
        volume_manager=volume_manager,
        port_resolver=PortResolver(max_attempts=settings.port_scan_attempts),
        metrics=metrics,
    )
    hosts_manager = HostsManager(settings)
    proxy_sync = ProxySync(container_manager, db_manager)
    certificate_bootstrap = CertificateBootstrap(
        container_manager, TrustStoreInstaller(), settings, audit_logger
    )
    service_state_manager = ServiceStateManager(
        container_manager,
        volume_manager,
        db_manager,
        proxy_sync=proxy_sync,
        hooks={ServiceId.CADDY.value: certificate_bootstrap},
        audit_logger=audit_logger,
    )
    project_state_manager = ProjectStateManager(
        db_manager,
        volume_manager,
        container_manager,
        hosts_manager,
        proxy_sync,
        laravel_installer=LaravelInstaller(volume_manager, settings),
        settings=settings,
        audit_logger=audit_logger,
    )
    resource_reconciler = ResourceReconciler(
        container_manager,
        volume_manager,
        db_manager,
        project_state_manager,
        service_state_manager,
        metrics=metrics,
        audit_logger=audit_logger,
    )
    event_monitor = EventMonitor(docker_client, settings, metrics)
    shutdown_coordinator = ShutdownCoordinator(
        event_monitor, container_manager, db_manager, docker_client_manager, settings
    )

    return Runtime(
        settings=settings,
        docker_client_manager=docker_client_manager,
        db_manager=db_manager,
        metrics=metrics,
        audit_logger=audit_logger,
        container_manager=container_manager,
        volume_manager=volume_manager,
        hosts_manager=hosts_manager,
        proxy_sync=proxy_sync,
        certificate_bootstrap=certificate_bootstrap,
        service_state_manager=service_state_manager,
        project_state_manager=project_state_manager,
        database_operations=DatabaseOperations(container_manager, audit_logger),
        resource_reconciler=resource_reconciler,
        event_monitor=event_monitor,
        shutdown_coordinator=shutdown_coordinator,
    )
