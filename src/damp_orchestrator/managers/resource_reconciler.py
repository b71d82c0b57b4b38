"""Resource reconciler for orphan detection, drift checks and cleanup."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

from docker.models.containers import Container as DockerContainer
from docker.models.volumes import Volume

from damp_orchestrator.labels import LabelKey, ResourceLabels, ResourceType
from damp_orchestrator.managers.container_manager import ContainerManager
from damp_orchestrator.managers.project_state_manager import ProjectStateManager
from damp_orchestrator.managers.service_state_manager import ServiceStateManager
from damp_orchestrator.managers.volume_manager import VolumeManager
from damp_orchestrator.models.database import DatabaseManager
from damp_orchestrator.repositories import ProjectRepository, ServiceStateRepository
from damp_orchestrator.results import BatchResult, Result
from damp_orchestrator.service_definitions import get_service_definition
from damp_orchestrator.utils import get_logger
from damp_orchestrator.utils.audit_logger import AuditEventType, AuditLogger
from damp_orchestrator.utils.exceptions import ServiceNotFoundError, ValidationError
from damp_orchestrator.utils.metrics_collector import MetricsCollector

logger = get_logger(__name__)


class ResourceKind(str, Enum):
    CONTAINER = "container"
    VOLUME = "volume"


class ResourceCategory(str, Enum):
    PROJECT = "project"
    SERVICE = "service"
    BUNDLED = "bundled"
    HELPER = "helper"
    NGROK = "ngrok"
    UNKNOWN = "unknown"


CATEGORY_DISPLAY_NAMES = {
    ResourceCategory.HELPER: "Helper",
    ResourceCategory.NGROK: "Ngrok",
    ResourceCategory.UNKNOWN: "Uncategorized",
}

CONTAINER_CATEGORIES = {
    ResourceType.PROJECT_CONTAINER: ResourceCategory.PROJECT,
    ResourceType.SERVICE_CONTAINER: ResourceCategory.SERVICE,
    ResourceType.BUNDLED_SERVICE_CONTAINER: ResourceCategory.BUNDLED,
    ResourceType.HELPER_CONTAINER: ResourceCategory.HELPER,
    ResourceType.NGROK_TUNNEL: ResourceCategory.NGROK,
}


@dataclass
class DockerResource:
    """One managed container or volume with its reconciliation verdict."""

    id: str
    name: str
    kind: ResourceKind
    category: ResourceCategory
    status: str
    is_orphan: bool = False
    needs_update: bool = False
    labels: dict[str, str] = field(default_factory=dict)
    created_at_ms: int = 0
    owner_id: str = ""
    owner_display_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.kind.value,
            "category": self.category.value,
            "status": self.status,
            "is_orphan": self.is_orphan,
            "needs_update": self.needs_update,
            "labels": dict(self.labels),
            "created_at_ms": self.created_at_ms,
            "owner_id": self.owner_id,
            "owner_display_name": self.owner_display_name,
        }


def created_at_ms(created: str | None) -> int:
    """Convert Docker's RFC 3339 ``Created`` timestamp to epoch milliseconds."""
    if not created:
        return 0
    try:
        # Fractional seconds carry nanoseconds; second precision is enough.
        parsed = datetime.strptime(created[:19], "%Y-%m-%dT%H:%M:%S")
    except ValueError:
        return 0
    return int(parsed.replace(tzinfo=timezone.utc).timestamp() * 1000)


def service_has_drifted(service_id: str, attrs: dict[str, Any]) -> bool:
    """
    Compare a service container against its current definition.

    The container has drifted when its image differs or when a declared
    environment variable is missing or has a different value. Variables the
    container carries beyond the definition are ignored.

    Args:
        service_id: Service ID from the container's labels
        attrs: Container attributes as returned by ``docker inspect``

    Returns:
        True if the container should be recreated
    """
    try:
        definition = get_service_definition(service_id)
    except ServiceNotFoundError:
        return False

    config = attrs.get("Config") or {}
    expected = definition.default_config
    if config.get("Image") != expected.image:
        logger.debug(
            "Service image changed",
            extra={
                "service_id": service_id,
                "current": config.get("Image"),
                "expected": expected.image,
            },
        )
        return True

    current_env = set(config.get("Env") or [])
    for env_var in expected.environment_vars:
        if env_var not in current_env:
            logger.debug(
                "Service environment variable missing or changed",
                extra={"service_id": service_id, "variable": env_var.split("=", 1)[0]},
            )
            return True
    return False


class ResourceReconciler:
    """Classifies every managed Docker object against persisted state."""

    def __init__(
        self,
        container_manager: ContainerManager,
        volume_manager: VolumeManager,
        db_manager: DatabaseManager,
        project_state_manager: ProjectStateManager,
        service_state_manager: ServiceStateManager,
        metrics: MetricsCollector | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        """
        Initialize resource reconciler.

        Args:
            container_manager: Container manager
            volume_manager: Volume manager
            db_manager: Database manager holding projects and service states
            project_state_manager: Source of the pending project IDs
            service_state_manager: Used to recreate drifted services
            metrics: Metrics collector
            audit_logger: Audit logger
        """
        self.container_manager = container_manager
        self.volume_manager = volume_manager
        self.db_manager = db_manager
        self.project_state_manager = project_state_manager
        self.service_state_manager = service_state_manager
        self.metrics = metrics
        self.audit_logger = audit_logger

    async def get_all_resources(self) -> list[DockerResource]:
        """
        List every managed container and volume with orphan and drift flags.

        Returns:
            Containers first, then volumes

        Raises:
            DockerAPIError: If the daemon cannot list resources
        """
        containers, volumes = await asyncio.gather(
            self.container_manager.get_all_managed_containers(),
            self.volume_manager.get_all_managed_volumes(),
        )

        # Must be read before the project list.
        pending = self.project_state_manager.pending_project_ids
        async with self.db_manager.get_session() as session:
            projects = {p.id: p.name for p in await ProjectRepository(session).list_all()}
            installed = await ServiceStateRepository(session).service_ids()

        def project_exists(project_id: str) -> bool:
            return project_id in projects or project_id in pending

        resources = [
            self._classify_container(c, project_exists, installed, projects) for c in containers
        ]

        service_ids_in_use = {
            (c.labels or {}).get(LabelKey.SERVICE_ID.value)
            for c in containers
        }
        service_ids_in_use.discard(None)
        resources.extend(
            self._classify_volume(v, project_exists, service_ids_in_use, projects)
            for v in volumes
        )

        orphans = sum(1 for r in resources if r.is_orphan)
        logger.info(
            "Resources classified",
            extra={
                "containers": len(containers),
                "volumes": len(volumes),
                "orphans": orphans,
            },
        )
        return resources

    def _classify_container(
        self,
        container: DockerContainer,
        project_exists: Callable[[str], bool],
        installed: set[str],
        projects: dict[str, str],
    ) -> DockerResource:
        labels = dict(container.labels or {})
        parsed = ResourceLabels.from_labels(labels)
        category = CONTAINER_CATEGORIES.get(parsed.type) if parsed else None
        category = category or ResourceCategory.UNKNOWN
        project_id = parsed.project_id if parsed else None
        service_id = parsed.service_id if parsed else None

        is_orphan = False
        needs_update = False
        if category in (ResourceCategory.PROJECT, ResourceCategory.BUNDLED) and project_id:
            is_orphan = not project_exists(project_id)
        elif category == ResourceCategory.SERVICE and service_id:
            is_orphan = service_id not in installed
            if not is_orphan:
                needs_update = service_has_drifted(service_id, container.attrs)

        owner_id, owner_name = self._owner(category, project_id, service_id, projects)
        return DockerResource(
            id=container.id,
            name=container.name or container.id[:12],
            kind=ResourceKind.CONTAINER,
            category=category,
            status=container.status,
            is_orphan=is_orphan,
            needs_update=needs_update,
            labels=labels,
            created_at_ms=created_at_ms(container.attrs.get("Created")),
            owner_id=owner_id,
            owner_display_name=owner_name,
        )

    def _classify_volume(
        self,
        volume: Volume,
        project_exists: Callable[[str], bool],
        service_ids_in_use: set[str],
        projects: dict[str, str],
    ) -> DockerResource:
        labels = dict(volume.attrs.get("Labels") or {})
        parsed = ResourceLabels.from_labels(labels)
        project_id = parsed.project_id if parsed else None
        service_id = parsed.service_id if parsed else None

        category = ResourceCategory.UNKNOWN
        is_orphan = False
        if parsed and parsed.type == ResourceType.PROJECT_VOLUME and project_id:
            category = ResourceCategory.PROJECT
            is_orphan = not project_exists(project_id)
        elif parsed and parsed.type == ResourceType.SERVICE_VOLUME and service_id:
            category = ResourceCategory.SERVICE
            is_orphan = service_id not in service_ids_in_use

        owner_id, owner_name = self._owner(category, project_id, service_id, projects)
        return DockerResource(
            id=volume.name,
            name=volume.name,
            kind=ResourceKind.VOLUME,
            category=category,
            status="active",
            is_orphan=is_orphan,
            labels=labels,
            created_at_ms=created_at_ms(volume.attrs.get("CreatedAt")),
            owner_id=owner_id,
            owner_display_name=owner_name,
        )

    @staticmethod
    def _owner(
        category: ResourceCategory,
        project_id: str | None,
        service_id: str | None,
        projects: dict[str, str],
    ) -> tuple[str, str]:
        if project_id:
            return project_id, projects.get(project_id, project_id)
        if service_id:
            return service_id, service_id
        return category.value, CATEGORY_DISPLAY_NAMES.get(category, category.value)

    async def delete_resource(self, kind: ResourceKind | str, resource_id: str) -> None:
        """
        Delete one container (forced) or volume.

        Args:
            kind: ``container`` or ``volume``
            resource_id: Container ID or volume name

        Raises:
            ValidationError: For an unknown resource type
            DockerAPIError: If removal fails
            VolumeInUseError: If a volume is still attached
        """
        try:
            kind = ResourceKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown resource type: {kind}") from None

        try:
            if kind == ResourceKind.CONTAINER:
                await self.container_manager.remove_container(resource_id)
            else:
                await self.volume_manager.remove_volume(resource_id)
        except Exception as e:
            logger.error(
                "Failed to delete resource",
                extra={"type": kind.value, "id": resource_id, "error": str(e)},
            )
            self._audit(AuditEventType.RESOURCE_DELETE, resource_id, False, {"error": str(e)})
            raise

        logger.info("Resource deleted", extra={"type": kind.value, "id": resource_id})
        self._audit(AuditEventType.RESOURCE_DELETE, resource_id, True, {"type": kind.value})

    async def delete_resources(
        self,
        container_ids: list[str] | None = None,
        volume_names: list[str] | None = None,
    ) -> BatchResult:
        """
        Delete many resources concurrently.

        Containers go first so their volumes are released before volume
        removal starts. One item's failure never cancels its siblings.

        Args:
            container_ids: Containers to remove
            volume_names: Volumes to remove

        Returns:
            Deleted and failed IDs, with an error message per failure
        """
        result = await self._delete_all(
            ResourceKind.CONTAINER, container_ids or [], self.container_manager.remove_container
        )
        result = result.merge(
            await self._delete_all(
                ResourceKind.VOLUME, volume_names or [], self.volume_manager.remove_volume
            )
        )
        logger.info(
            "Batch delete finished",
            extra={"deleted": len(result.deleted), "failed": len(result.failed)},
        )
        return result

    async def prune_orphans(
        self,
        container_ids: list[str] | None = None,
        volume_names: list[str] | None = None,
    ) -> BatchResult:
        """
        Delete orphaned resources.

        Without arguments every resource currently classified as orphaned is
        removed. With arguments only the listed resources that are still
        orphaned are removed; anything else is reported as failed.

        Args:
            container_ids: Restrict to these containers
            volume_names: Restrict to these volumes

        Returns:
            Deleted and failed IDs
        """
        resources = await self.get_all_resources()
        orphan_containers = [
            r.id for r in resources if r.is_orphan and r.kind == ResourceKind.CONTAINER
        ]
        orphan_volumes = [r.id for r in resources if r.is_orphan and r.kind == ResourceKind.VOLUME]

        skipped = BatchResult()
        if container_ids is not None or volume_names is not None:
            requested_containers = list(container_ids or [])
            requested_volumes = list(volume_names or [])
            for rid in requested_containers + requested_volumes:
                if rid not in orphan_containers and rid not in orphan_volumes:
                    skipped.failed.append(rid)
                    skipped.errors[rid] = "Resource is not an orphan"
            orphan_containers = [c for c in requested_containers if c in orphan_containers]
            orphan_volumes = [v for v in requested_volumes if v in orphan_volumes]

        result = skipped.merge(await self.delete_resources(orphan_containers, orphan_volumes))
        self._audit(
            AuditEventType.RESOURCE_PRUNE,
            "orphans",
            result.complete,
            {"deleted": len(result.deleted), "failed": len(result.failed)},
        )
        return result

    async def update_service(self, service_id: str) -> Result[dict[str, Any]]:
        """Recreate a drifted service from its current definition."""
        return await self.service_state_manager.update_service(service_id)

    async def _delete_all(
        self,
        kind: ResourceKind,
        ids: list[str],
        remove: Callable[[str], Awaitable[None]],
    ) -> BatchResult:
        outcomes = await asyncio.gather(*(remove(rid) for rid in ids), return_exceptions=True)

        result = BatchResult()
        for rid, outcome in zip(ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Failed to delete resource",
                    extra={"type": kind.value, "id": rid, "error": str(outcome)},
                )
                result.failed.append(rid)
                result.errors[rid] = str(outcome)
                status = "failed"
            else:
                result.deleted.append(rid)
                status = "deleted"
            if self.metrics:
                self.metrics.record_resource_deletion(kind.value, status)
        return result

    def _audit(
        self, event: AuditEventType, target: str, success: bool, details: dict | None = None
    ) -> None:
        if self.audit_logger:
            self.audit_logger.log_event(event, target=target, success=success, details=details)
