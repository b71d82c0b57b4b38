"""Project state manager: create, update and delete per-project environments."""

import asyncio
import json
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from packaging.version import Version

from damp_orchestrator.config import Settings, get_settings
from damp_orchestrator.labels import ResourceLabels, ResourceType
from damp_orchestrator.managers.container_manager import ContainerManager, ContainerState
from damp_orchestrator.managers.hosts_manager import HostsManager
from damp_orchestrator.managers.laravel_installer import LaravelInstaller
from damp_orchestrator.managers.proxy_sync import ProxySync
from damp_orchestrator.managers.volume_manager import ProgressEvent, ProgressSink, VolumeManager
from damp_orchestrator.models.database import DatabaseManager
from damp_orchestrator.models.projects import Project
from damp_orchestrator.project_config import (
    LARAVEL_MIN_PHP_VERSION,
    CreateProjectInput,
    ImportMethod,
    ProjectType,
    UpdateProjectInput,
    bundled_services_from_json,
    domain_for,
    sanitize_name,
    volume_name_for,
)
from damp_orchestrator.project_templates import (
    POST_CREATE_COMMAND,
    POST_START_COMMAND,
    TemplateContext,
    generate_env_for_bundled_services,
    generate_index_php,
    generate_project_templates,
)
from damp_orchestrator.repositories.projects import ProjectRepository
from damp_orchestrator.results import Result
from damp_orchestrator.service_definitions import get_service_definition
from damp_orchestrator.utils import get_logger
from damp_orchestrator.utils.audit_logger import AuditEventType, AuditLogger
from damp_orchestrator.utils.cleanup import best_effort, remove_path
from damp_orchestrator.utils.exceptions import (
    DevcontainerExistsError,
    ValidationError,
)

logger = get_logger(__name__)

STAGE_CREATING_VOLUME = ("creating-volume", 1, 10)
STAGE_CREATING_DEVCONTAINER = ("creating-devcontainer", 5, 60)
STAGE_COPYING_FILES = ("copying-files", 7, 80)
STAGE_UPDATING_HOSTS = ("updating-hosts", 9, 90)
STAGE_SAVING_PROJECT = ("saving-project", 10, 95)
STAGE_COMPLETE = ("complete", 10, 100)
TOTAL_STEPS = 10


@dataclass
class LaravelDetection:
    is_laravel: bool
    version: str | None = None
    composer_json_path: str | None = None


def detect_laravel(folder_path: str) -> LaravelDetection:
    """
    Decide whether a folder holds a Laravel application.

    Both signals are required: ``laravel/framework`` in ``composer.json``
    (``require`` or ``require-dev``) and an ``artisan`` file. Either alone is
    treated as non-Laravel, as is an unreadable manifest.

    Args:
        folder_path: Project folder

    Returns:
        Detection result with the declared framework constraint when found
    """
    composer_json_path = os.path.join(folder_path, "composer.json")
    if not os.path.isfile(composer_json_path):
        return LaravelDetection(is_laravel=False)

    try:
        with open(composer_json_path, encoding="utf-8") as handle:
            manifest = json.load(handle)
    except (OSError, ValueError) as e:
        logger.error("Error detecting Laravel", extra={"path": folder_path, "error": str(e)})
        return LaravelDetection(is_laravel=False)

    require = manifest.get("require") or {}
    require_dev = manifest.get("require-dev") or {}
    version = require.get("laravel/framework") or require_dev.get("laravel/framework")
    in_composer = "laravel/framework" in require or "laravel/framework" in require_dev
    has_artisan = os.path.exists(os.path.join(folder_path, "artisan"))

    if in_composer and has_artisan:
        return LaravelDetection(
            is_laravel=True, version=version, composer_json_path=composer_json_path
        )
    if in_composer:
        logger.info(
            "Laravel package found without artisan, treating as non-Laravel",
            extra={"path": folder_path},
        )
    return LaravelDetection(is_laravel=False)


def _parse_php_version(php_version: str) -> Version:
    try:
        return Version(php_version)
    except ValueError:
        raise ValidationError(f"Invalid PHP version: {php_version}")


def validate_php_version(project_type: ProjectType | str, php_version: str) -> None:
    """
    Enforce the minimum PHP version for Laravel projects.

    Raises:
        ValidationError: If a Laravel project selects PHP below 8.2
    """
    if ProjectType(project_type) != ProjectType.LARAVEL:
        return
    if _parse_php_version(php_version) < Version(LARAVEL_MIN_PHP_VERSION):
        raise ValidationError(
            f"Laravel requires PHP {LARAVEL_MIN_PHP_VERSION} or higher. "
            f"Selected version: {php_version}"
        )


def devcontainer_exists(folder_path: str) -> bool:
    return os.path.exists(os.path.join(folder_path, ".devcontainer"))


def document_root(project: Project) -> str:
    if project.import_method == ImportMethod.IMPORT.value and project.type != ProjectType.LARAVEL.value:
        return "/var/www/html"
    return "/var/www/html/public"


def template_context(project: Project) -> TemplateContext:
    """Build template values from a project record."""
    return TemplateContext(
        project_id=project.id,
        project_name=project.name,
        volume_name=project.volume_name,
        php_version=project.php_version,
        php_variant=project.php_variant,
        node_version=project.node_version,
        php_extensions=" ".join(project.php_extensions or []),
        document_root=document_root(project),
        network_name=project.network_name,
        forwarded_port=project.forwarded_port,
        enable_claude_ai=project.enable_claude_ai,
        post_start_command=project.post_start_command,
        post_create_command=project.post_create_command,
        launch_index_path="public/" if project.type == ProjectType.LARAVEL.value else "",
        bundled_services=bundled_services_from_json(project.bundled_services),
    )


def write_devcontainer_files(project: Project, overwrite: bool = False) -> list[str]:
    """
    Write the generated project files to disk.

    Args:
        project: Project record
        overwrite: Replace an existing ``.devcontainer`` folder

    Returns:
        Relative paths of the files written

    Raises:
        DevcontainerExistsError: If devcontainer files exist and overwrite is off
    """
    if not overwrite and devcontainer_exists(project.path):
        raise DevcontainerExistsError(project.path)

    context = template_context(project)
    files = generate_project_templates(context).files()
    if context.bundled_services:
        files[".env.damp"] = generate_env_for_bundled_services(
            project.name, project.domain, context.bundled_services
        )
    if project.type == ProjectType.BASIC_PHP.value:
        index_path = os.path.join(project.path, "public", "index.php")
        if not os.path.exists(index_path):
            files["public/index.php"] = generate_index_php(project.name, project.php_version)

    for relative, content in files.items():
        target = os.path.join(project.path, *relative.split("/"))
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "w", encoding="utf-8") as handle:
            handle.write(content)
    return list(files)


def project_domains(project: Project) -> list[str]:
    """Main domain plus ``<subdomain>.<domain>`` for bundled services with a web UI."""
    domains = [project.domain]
    for service in bundled_services_from_json(project.bundled_services):
        subdomain = get_service_definition(service.service_id).proxy_subdomain
        if subdomain:
            domains.append(f"{subdomain}.{project.domain}")
    return domains


@dataclass
class _Rollback:
    project_id: str | None = None
    volume_name: str | None = None
    folder: str | None = None


class ProjectStateManager:
    """Coordinates the project lifecycle across disk, volumes, hosts and proxy."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        volume_manager: VolumeManager,
        container_manager: ContainerManager,
        hosts_manager: HostsManager,
        proxy_sync: ProxySync,
        laravel_installer: LaravelInstaller | None = None,
        settings: Settings | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        """
        Initialize project state manager.

        Args:
            db_manager: Database manager holding project records
            volume_manager: Volume manager
            container_manager: Container manager
            hosts_manager: Hosts file manager
            proxy_sync: Reverse proxy synchronisation
            laravel_installer: Laravel scaffolding helper
            settings: Application settings
            audit_logger: Audit logger
        """
        self.db_manager = db_manager
        self.volume_manager = volume_manager
        self.container_manager = container_manager
        self.hosts_manager = hosts_manager
        self.proxy_sync = proxy_sync
        self.settings = settings or get_settings()
        self.laravel_installer = laravel_installer or LaravelInstaller(
            volume_manager, self.settings
        )
        self.audit_logger = audit_logger
        self._pending: set[str] = set()

    # Pending registry

    def is_pending_project(self, project_id: str) -> bool:
        """Whether a project is mid-creation and must not be treated as orphaned."""
        return project_id in self._pending

    @property
    def pending_project_ids(self) -> frozenset[str]:
        return frozenset(self._pending)

    # Queries

    async def get_all_projects(self) -> list[Project]:
        async with self.db_manager.get_session() as session:
            return await ProjectRepository(session).list_ordered()

    async def get_project(self, project_id: str) -> Project | None:
        async with self.db_manager.get_session() as session:
            return await ProjectRepository(session).get(project_id)

    async def get_project_container_state(self, project_id: str) -> ContainerState | None:
        """
        Live state of a project's devcontainer.

        Returns:
            None for an unknown project, otherwise the container state
            (``exists=False`` when no container carries the project's labels)
        """
        project = await self.get_project(project_id)
        if project is None:
            return None
        return await self.container_manager.get_container_state_by_labels(
            ResourceLabels(type=ResourceType.PROJECT_CONTAINER, project_id=project_id)
        )

    # Lifecycle

    async def create_project(
        self,
        input: CreateProjectInput,
        on_progress: ProgressSink | None = None,
    ) -> Result[Project]:
        """
        Create or import a project.

        Validation runs before any side effect. Once a side effect happened, a
        failure removes the pending registration, the created volume and the
        created folder; a folder that existed before is never removed. Hosts
        entries are best-effort.

        Args:
            input: Creation request
            on_progress: Optional progress sink

        Returns:
            Result carrying the persisted project
        """
        try:
            project_path, sanitized, import_method = self._resolve_project_path(input)
            project_type = await self._detect_project_type(project_path, import_method, input)
            await self._validate_creation(sanitized, project_type, input, project_path)
        except ValidationError as e:
            logger.warning("Project creation rejected", extra={"project_name": input.name, "error": str(e)})
            return Result.fail(str(e))
        except DevcontainerExistsError as e:
            return Result.fail(str(e))
        except Exception as e:
            logger.error("Project validation failed", extra={"project_name": input.name, "error": str(e)})
            return Result.fail(str(e))

        rollback = _Rollback()
        project: Project | None = None
        try:
            if not os.path.exists(project_path):
                await asyncio.to_thread(os.makedirs, project_path, exist_ok=True)
                rollback.folder = project_path

            project = self._build_project(input, sanitized, project_type, import_method, project_path)
            self._pending.add(project.id)
            rollback.project_id = project.id

            self._report(on_progress, STAGE_CREATING_VOLUME, f"Creating Docker volume: {project.volume_name}")
            await self.volume_manager.create_project_volume(project.volume_name, project.id)
            rollback.volume_name = project.volume_name

            if input.laravel_options is not None and import_method == ImportMethod.CREATE:
                await self.laravel_installer.install(
                    project.volume_name,
                    project.name,
                    project.id,
                    input.laravel_options,
                    on_progress,
                )

            self._report(
                on_progress,
                STAGE_CREATING_DEVCONTAINER,
                "Generating devcontainer configuration files...",
            )
            await asyncio.to_thread(write_devcontainer_files, project, input.overwrite_existing)
            project.devcontainer_created = True

            self._report(on_progress, STAGE_COPYING_FILES, "Copying project files to Docker volume...")
            await self.volume_manager.copy_to_volume(
                project_path, project.volume_name, project.id, on_progress
            )
            project.volume_copied = True

            self._report(
                on_progress, STAGE_UPDATING_HOSTS, f"Adding domain {project.domain} to hosts file..."
            )
            await self._add_hosts_entries(project)

            self._report(on_progress, STAGE_SAVING_PROJECT, "Saving project configuration...")
            async with self.db_manager.get_session() as session:
                repo = ProjectRepository(session)
                project.sort_order = await repo.next_order()
                await repo.create(project)
        except Exception as e:
            logger.error(
                "Failed to create project, rolling back",
                extra={"project_name": input.name, "error": str(e)},
            )
            await self._rollback(rollback)
            self._audit(AuditEventType.PROJECT_CREATE, input.name, False, {"error": str(e)})
            return Result.fail(str(e))

        self._pending.discard(project.id)
        await self._sync_proxy()

        self._report(on_progress, STAGE_COMPLETE, "Project setup complete!")
        self._audit(
            AuditEventType.PROJECT_CREATE,
            project.id,
            True,
            {"name": project.name, "type": project.type},
        )
        logger.info("Project created", extra={"project_id": project.id, "project_name": project.name})
        return Result.ok(project)

    async def update_project(self, input: UpdateProjectInput) -> Result[Project]:
        """
        Apply a partial update, optionally regenerating the project files.

        A domain change swaps the hosts entries (add new, remove old).

        Args:
            input: Update request

        Returns:
            Result carrying the updated project
        """
        try:
            project = await self.get_project(input.id)
            if project is None:
                return Result.fail(f"Project {input.id} not found")

            old_domain = project.domain
            if input.php_version is not None:
                validate_php_version(project.type, input.php_version)

            for attr, value in input.changes().items():
                setattr(project, attr, value)
            project.updated_at = datetime.now(timezone.utc)

            if input.regenerate_files:
                await asyncio.to_thread(write_devcontainer_files, project, True)

            if input.domain and input.domain != old_domain:
                await self._swap_domain(old_domain, input.domain)

            async with self.db_manager.get_session() as session:
                project = await ProjectRepository(session).save(project)
        except Exception as e:
            logger.error("Failed to update project", extra={"project_id": input.id, "error": str(e)})
            self._audit(AuditEventType.PROJECT_UPDATE, input.id, False, {"error": str(e)})
            return Result.fail(str(e))

        if input.domain and input.domain != old_domain:
            await self._sync_proxy()
        self._audit(AuditEventType.PROJECT_UPDATE, project.id, True, input.changes())
        logger.info("Project updated", extra={"project_id": project.id})
        return Result.ok(project)

    async def delete_project(
        self,
        project_id: str,
        remove_volume: bool = False,
        remove_folder: bool = False,
    ) -> Result[None]:
        """
        Delete a project record and optionally its volume and folder.

        Args:
            project_id: Project ID
            remove_volume: Also remove the project volume
            remove_folder: Also remove the project folder from disk

        Returns:
            Result
        """
        try:
            project = await self.get_project(project_id)
            if project is None:
                return Result.fail(f"Project {project_id} not found")

            for domain in project_domains(project):
                result = await self.hosts_manager.remove_domain(domain)
                if not result.success:
                    logger.warning(
                        "Failed to remove domain from hosts file",
                        extra={"domain": domain, "error": result.error},
                    )

            if remove_volume:
                await self.volume_manager.remove_volume(project.volume_name)
            if remove_folder:
                await asyncio.to_thread(remove_path, project.path)

            async with self.db_manager.get_session() as session:
                await ProjectRepository(session).delete_by_id(project_id)
        except Exception as e:
            logger.error("Failed to delete project", extra={"project_id": project_id, "error": str(e)})
            self._audit(AuditEventType.PROJECT_DELETE, project_id, False, {"error": str(e)})
            return Result.fail(str(e))

        await self._sync_proxy()
        self._audit(
            AuditEventType.PROJECT_DELETE,
            project_id,
            True,
            {"remove_volume": remove_volume, "remove_folder": remove_folder},
        )
        logger.info("Project deleted", extra={"project_id": project.id, "project_name": project.name})
        return Result.ok()

    async def reorder_projects(self, project_ids: list[str]) -> Result[None]:
        try:
            async with self.db_manager.get_session() as session:
                await ProjectRepository(session).reorder(project_ids)
        except Exception as e:
            logger.error("Failed to reorder projects", extra={"error": str(e)})
            return Result.fail(str(e))
        logger.info("Projects reordered", extra={"count": len(project_ids)})
        return Result.ok()

    async def sync_to_volume(
        self,
        project_id: str,
        include_node_modules: bool = False,
        include_vendor: bool = False,
        on_progress: ProgressSink | None = None,
    ) -> Result[None]:
        """Mirror the project folder into its volume."""
        project = await self.get_project(project_id)
        if project is None:
            return Result.fail(f"Project {project_id} not found")
        try:
            await self.volume_manager.sync_to_volume(
                project.path,
                project.volume_name,
                project.id,
                include_node_modules,
                include_vendor,
                on_progress,
            )
        except Exception as e:
            logger.error("Sync to volume failed", extra={"project_id": project_id, "error": str(e)})
            return Result.fail(str(e))
        return Result.ok()

    async def sync_from_volume(
        self,
        project_id: str,
        include_node_modules: bool = False,
        include_vendor: bool = False,
        on_progress: ProgressSink | None = None,
    ) -> Result[None]:
        """Mirror the project volume back into the project folder."""
        project = await self.get_project(project_id)
        if project is None:
            return Result.fail(f"Project {project_id} not found")
        try:
            await self.volume_manager.sync_from_volume(
                project.volume_name,
                project.path,
                project.id,
                include_node_modules,
                include_vendor,
                on_progress,
            )
        except Exception as e:
            logger.error("Sync from volume failed", extra={"project_id": project_id, "error": str(e)})
            return Result.fail(str(e))
        return Result.ok()

    # Internals

    def _resolve_project_path(self, input: CreateProjectInput) -> tuple[str, str, ImportMethod]:
        if not input.path:
            raise ValidationError("No folder selected")

        import_method = (
            ImportMethod.IMPORT if input.type == ProjectType.EXISTING else ImportMethod.CREATE
        )
        if import_method == ImportMethod.IMPORT:
            project_path = os.path.normpath(input.path)
            sanitized = sanitize_name(os.path.basename(project_path))
        else:
            sanitized = sanitize_name(input.name)
            project_path = os.path.join(input.path, sanitized)

        if not sanitized:
            raise ValidationError(f"Project name {input.name!r} has no usable characters")
        return project_path, sanitized, import_method

    async def _detect_project_type(
        self, project_path: str, import_method: ImportMethod, input: CreateProjectInput
    ) -> ProjectType:
        if import_method == ImportMethod.CREATE:
            return ProjectType(input.type or ProjectType.BASIC_PHP)

        if not os.path.isdir(project_path):
            raise ValidationError(f"Project folder does not exist: {project_path}")
        detection = await asyncio.to_thread(detect_laravel, project_path)
        if detection.is_laravel:
            logger.info(
                "Detected Laravel project",
                extra={"path": project_path, "version": detection.version},
            )
            return ProjectType.LARAVEL
        return ProjectType.BASIC_PHP

    async def _validate_creation(
        self,
        name: str,
        project_type: ProjectType,
        input: CreateProjectInput,
        project_path: str,
    ) -> None:
        validate_php_version(project_type, input.php_version)
        if devcontainer_exists(project_path) and not input.overwrite_existing:
            raise DevcontainerExistsError(project_path)
        async with self.db_manager.get_session() as session:
            if await ProjectRepository(session).get_by_name(name) is not None:
                raise ValidationError(f"A project named {name} already exists")

    def _build_project(
        self,
        input: CreateProjectInput,
        name: str,
        project_type: ProjectType,
        import_method: ImportMethod,
        project_path: str,
    ) -> Project:
        now = datetime.now(timezone.utc)
        return Project(
            id=str(uuid.uuid4()),
            name=name,
            type=project_type.value,
            import_method=import_method.value,
            path=project_path,
            volume_name=volume_name_for(name),
            domain=domain_for(name),
            php_version=input.php_version,
            php_variant=input.php_variant,
            node_version=input.node_version,
            php_extensions=list(input.php_extensions),
            enable_claude_ai=input.enable_claude_ai,
            forwarded_port=self.settings.forwarded_port,
            network_name=self.settings.network_name,
            post_start_command=POST_START_COMMAND,
            post_create_command=POST_CREATE_COMMAND,
            laravel_options=input.laravel_options.to_dict() if input.laravel_options else None,
            bundled_services=[service.to_dict() for service in input.bundled_services],
            sort_order=0,
            created_at=now,
            updated_at=now,
            devcontainer_created=False,
            volume_copied=False,
        )

    async def _add_hosts_entries(self, project: Project) -> None:
        for domain in project_domains(project):
            result = await self.hosts_manager.add_domain(domain)
            if not result.success:
                logger.warning(
                    "Failed to update hosts file",
                    extra={"domain": domain, "error": result.error},
                )

    async def _swap_domain(self, old_domain: str, new_domain: str) -> None:
        added = await self.hosts_manager.add_domain(new_domain)
        if not added.success:
            logger.warning(
                "Failed to add domain to hosts file",
                extra={"domain": new_domain, "error": added.error},
            )
        removed = await self.hosts_manager.remove_domain(old_domain)
        if not removed.success:
            logger.warning(
                "Failed to remove domain from hosts file",
                extra={"domain": old_domain, "error": removed.error},
            )

    async def _rollback(self, rollback: _Rollback) -> None:
        if rollback.project_id:
            self._pending.discard(rollback.project_id)
        if rollback.volume_name:
            async with best_effort("rollback project volume", volume_name=rollback.volume_name):
                await self.volume_manager.remove_volume(rollback.volume_name)
                logger.info("Rollback removed volume", extra={"volume_name": rollback.volume_name})
        if rollback.folder:
            async with best_effort("rollback project folder", path=rollback.folder):
                await asyncio.to_thread(remove_path, rollback.folder)
                logger.info("Rollback removed folder", extra={"path": rollback.folder})

    async def _sync_proxy(self) -> None:
        result = await self.proxy_sync.sync()
        if not result.success:
            logger.warning("Failed to sync projects to Caddy", extra={"error": result.error})

    @staticmethod
    def _report(sink: ProgressSink | None, stage: tuple[str, int, int], message: str) -> None:
        if sink is None:
            return
        name, step, percentage = stage
        sink(ProgressEvent(name, message, step, TOTAL_STEPS, percentage))

    def _audit(
        self, event: AuditEventType, target: str, success: bool, details: dict | None = None
    ) -> None:
        if self.audit_logger:
            self.audit_logger.log_event(event, target=target, success=success, details=details)
