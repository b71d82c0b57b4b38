"""Manager modules for business logic."""

from .certificate_bootstrap import BootstrapResult, CertificateBootstrap
from .container_manager import ContainerManager, ContainerState, CreateContainerOptions, ExecResult
from .database_operations import DatabaseOperations
from .event_monitor import ContainerEvent, EventMonitor, EventMonitorStatus
from .hosts_manager import HostsManager, HostsResult
from .laravel_installer import LaravelInstaller
from .port_resolver import PortResolver
from .project_state_manager import ProjectStateManager
from .proxy_sync import ProxySync
from .resource_reconciler import DockerResource, ResourceReconciler
from .service_state_manager import InstallOptions, ServiceStateManager
from .shutdown_coordinator import ShutdownCoordinator
from .trust_store import TrustStoreInstaller
from .volume_manager import ProgressEvent, VolumeManager

__all__ = [
    "BootstrapResult",
    "CertificateBootstrap",
    "ContainerEvent",
    "ContainerManager",
    "ContainerState",
    "CreateContainerOptions",
    "DatabaseOperations",
    "DockerResource",
    "EventMonitor",
    "EventMonitorStatus",
    "ExecResult",
    "HostsManager",
    "HostsResult",
    "InstallOptions",
    "LaravelInstaller",
    "PortResolver",
    "ProgressEvent",
    "ProjectStateManager",
    "ProxySync",
    "ResourceReconciler",
    "ServiceStateManager",
    "ShutdownCoordinator",
    "TrustStoreInstaller",
    "VolumeManager",
]
