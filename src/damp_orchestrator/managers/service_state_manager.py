"""Service state manager: install and operate the shared services."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from damp_orchestrator.labels import service_container_labels, service_volume_labels
from damp_orchestrator.managers.container_manager import (
    ContainerManager,
    ContainerState,
    CreateContainerOptions,
)
from damp_orchestrator.managers.proxy_sync import ProxySync
from damp_orchestrator.managers.volume_manager import VolumeManager
from damp_orchestrator.models.database import DatabaseManager
from damp_orchestrator.repositories import AppSettingsRepository, ServiceStateRepository
from damp_orchestrator.results import HookContext, HookResult, Result
from damp_orchestrator.service_config import CustomConfig, volume_names_from_bindings
from damp_orchestrator.service_definitions import (
    ServiceDefinition,
    ServiceId,
    get_all_service_definitions,
    get_service_definition,
)
from damp_orchestrator.utils import get_logger
from damp_orchestrator.utils.audit_logger import AuditEventType, AuditLogger
from damp_orchestrator.utils.exceptions import ServiceNotFoundError

logger = get_logger(__name__)

PostInstallHook = Callable[[HookContext], Awaitable[HookResult]]


@dataclass
class InstallOptions:
    custom_config: CustomConfig | None = None
    start_immediately: bool = True


class ServiceStateManager:
    """Installs, removes and operates shared service containers.

    Every public operation returns a :class:`Result`; Docker failures are
    logged and reported as ``Result.fail`` with a readable message.
    """

    def __init__(
        self,
        container_manager: ContainerManager,
        volume_manager: VolumeManager,
        db_manager: DatabaseManager,
        proxy_sync: ProxySync | None = None,
        hooks: Mapping[str, PostInstallHook] | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        """
        Initialize service state manager.

        Args:
            container_manager: Container manager
            volume_manager: Volume manager
            db_manager: Database manager holding service states and settings
            proxy_sync: Proxy sync triggered when the proxy starts
            hooks: Post-install hooks keyed by service ID
            audit_logger: Audit logger
        """
        self.container_manager = container_manager
        self.volume_manager = volume_manager
        self.db_manager = db_manager
        self.proxy_sync = proxy_sync
        self.hooks: dict[str, PostInstallHook] = dict(hooks or {})
        self.audit_logger = audit_logger

    def register_hook(self, service_id: ServiceId | str, hook: PostInstallHook) -> None:
        self.hooks[ServiceId(service_id).value] = hook

    # Queries

    async def get_service_container_state(
        self, service_id: ServiceId | str, project_id: str | None = None
    ) -> ContainerState | None:
        """
        Live state of a service container, or of a project's bundled one.

        Returns:
            None for an unknown service ID, otherwise the container state
        """
        try:
            definition = get_service_definition(service_id)
        except ServiceNotFoundError:
            return None
        container = await self.container_manager.find_service_container(
            definition.id.value, project_id
        )
        if container is None:
            return ContainerState.not_found()
        return await self.container_manager.get_container_state(container.id)

    async def get_all_service_states(self) -> list[dict[str, Any]]:
        """
        Every catalog service with its live container state.

        Returns:
            One entry per definition: ``service``, ``state`` and ``installed``
            (whether an install was recorded)
        """
        async with self.db_manager.get_session() as session:
            installed = await ServiceStateRepository(session).service_ids()

        services = []
        for definition in get_all_service_definitions():
            state = await self.get_service_container_state(definition.id)
            services.append(
                {
                    "service": definition.to_dict(),
                    "state": (state or ContainerState.not_found()).to_dict(),
                    "installed": definition.id.value in installed,
                }
            )
        return services

    async def get_caddy_cert_installed(self) -> bool:
        async with self.db_manager.get_session() as session:
            return await AppSettingsRepository(session).is_caddy_cert_installed()

    async def set_caddy_cert_installed(self, installed: bool) -> None:
        async with self.db_manager.get_session() as session:
            await AppSettingsRepository(session).set_caddy_cert_installed(installed)

    # Lifecycle

    async def install_service(
        self, service_id: ServiceId | str, options: InstallOptions | None = None
    ) -> Result[dict[str, Any]]:
        """
        Pull, create and start a service container, then run its hook.

        A failing post-install hook is logged and never fails the install.

        Args:
            service_id: Service ID
            options: Custom configuration and whether to start immediately

        Returns:
            Result with ``message``, ``container_id`` and actual ``ports``
        """
        options = options or InstallOptions()
        try:
            definition = get_service_definition(service_id)
        except ServiceNotFoundError as e:
            return Result.fail(str(e))
        sid = definition.id.value

        if not await self.container_manager.is_docker_available():
            return Result.fail("Docker is not running. Please start Docker and try again.")

        try:
            config = definition.default_config
            logger.info("Pulling service image", extra={"service_id": sid, "image": config.image})
            await self.container_manager.pull_image(config.image)

            bindings = (
                options.custom_config.volume_bindings
                if options.custom_config and options.custom_config.volume_bindings is not None
                else config.volume_bindings
            )
            container_id = await self.container_manager.create_container(
                config,
                CreateContainerOptions(
                    labels=service_container_labels(sid, definition.service_type.value),
                    volume_labels={
                        name: service_volume_labels(sid, name)
                        for name in volume_names_from_bindings(bindings)
                    },
                ),
                options.custom_config,
            )

            if options.start_immediately:
                await self.container_manager.start_container(container_id)

            state = await self.container_manager.get_container_state(container_id)

            async with self.db_manager.get_session() as session:
                await ServiceStateRepository(session).mark_installed(
                    sid,
                    options.custom_config.to_dict() if options.custom_config else None,
                )
        except Exception as e:
            logger.error("Failed to install service", extra={"service_id": sid, "error": str(e)})
            self._audit(AuditEventType.SERVICE_INSTALL, sid, False, {"error": str(e)})
            return Result.fail(str(e))

        await self._run_post_install_hook(definition, container_id, options)

        self._audit(AuditEventType.SERVICE_INSTALL, sid, True, {"container_id": container_id})
        logger.info(
            "Service installed",
            extra={"service_id": sid, "container_id": container_id},
        )
        return Result.ok(
            {
                "message": definition.post_install_message,
                "container_id": container_id,
                "ports": [list(pair) for pair in state.ports],
            }
        )

    async def uninstall_service(
        self, service_id: ServiceId | str, remove_volumes: bool = True
    ) -> Result[dict[str, Any]]:
        """
        Remove a service container and, by default, its volumes.

        Volumes are removed by label first, then by the names in the
        definition's bindings for volumes created before labelling.

        Args:
            service_id: Service ID
            remove_volumes: Also remove the service's volumes

        Returns:
            Result with a ``message``
        """
        try:
            definition = get_service_definition(service_id)
        except ServiceNotFoundError as e:
            return Result.fail(str(e))
        sid = definition.id.value

        try:
            state = await self.get_service_container_state(sid)
            if state is None or not state.exists:
                return Result.fail(f"Service {sid} is not installed")

            if state.container_id:
                await self.container_manager.remove_container(state.container_id, remove_volumes=False)

            if remove_volumes:
                await self.volume_manager.remove_service_volumes_by_label(sid)
                names = volume_names_from_bindings(definition.default_config.volume_bindings)
                if names:
                    logger.info(
                        "Removing service volumes by name",
                        extra={"service_id": sid, "volumes": names},
                    )
                    await self.volume_manager.remove_service_volumes(names)

            async with self.db_manager.get_session() as session:
                await ServiceStateRepository(session).delete_by_id(sid)
                if definition.id == ServiceId.CADDY:
                    await AppSettingsRepository(session).set_caddy_cert_installed(False)
        except Exception as e:
            logger.error("Failed to uninstall service", extra={"service_id": sid, "error": str(e)})
            self._audit(AuditEventType.SERVICE_UNINSTALL, sid, False, {"error": str(e)})
            return Result.fail(str(e))

        self._audit(AuditEventType.SERVICE_UNINSTALL, sid, True, {"remove_volumes": remove_volumes})
        logger.info("Service uninstalled", extra={"service_id": sid})
        return Result.ok({"message": f"Service {sid} uninstalled successfully"})

    async def start_service(self, service_id: ServiceId | str) -> Result[dict[str, Any]]:
        """
        Start a service; starting the proxy also resyncs project routes.

        Returns:
            Result with a ``message``; an already running service succeeds
        """
        return await self._transition(service_id, "start")

    async def stop_service(self, service_id: ServiceId | str) -> Result[dict[str, Any]]:
        return await self._transition(service_id, "stop")

    async def restart_service(self, service_id: ServiceId | str) -> Result[dict[str, Any]]:
        return await self._transition(service_id, "restart")

    async def update_service(self, service_id: ServiceId | str) -> Result[dict[str, Any]]:
        """
        Recreate a service from the current definition.

        Volumes and the recorded custom configuration are kept.

        Args:
            service_id: Service ID

        Returns:
            Result of the reinstall
        """
        try:
            definition = get_service_definition(service_id)
        except ServiceNotFoundError as e:
            return Result.fail(str(e))
        sid = definition.id.value

        async with self.db_manager.get_session() as session:
            record = await ServiceStateRepository(session).get(sid)
        custom = CustomConfig.from_dict(record.custom_config) if record else None

        logger.info("Updating service", extra={"service_id": sid})
        removed = await self.uninstall_service(sid, remove_volumes=False)
        if not removed.success:
            return removed
        return await self.install_service(sid, InstallOptions(custom_config=custom))

    # Internals

    async def _transition(self, service_id: ServiceId | str, action: str) -> Result[dict[str, Any]]:
        try:
            definition = get_service_definition(service_id)
        except ServiceNotFoundError as e:
            return Result.fail(str(e))
        sid = definition.id.value
        event = {
            "start": AuditEventType.SERVICE_START,
            "stop": AuditEventType.SERVICE_STOP,
            "restart": AuditEventType.SERVICE_RESTART,
        }[action]

        try:
            state = await self.get_service_container_state(sid)
            if state is None or not state.exists or not state.container_id:
                return Result.fail(f"Container for service {sid} does not exist")

            if action == "start" and state.running:
                return Result.ok({"message": f"Service {sid} is already running"})
            if action == "stop" and not state.running:
                return Result.ok({"message": f"Service {sid} is already stopped"})

            if action == "start":
                await self.container_manager.start_container(state.container_id)
            elif action == "stop":
                await self.container_manager.stop_container(state.container_id)
            else:
                await self.container_manager.restart_container(state.container_id)
        except Exception as e:
            logger.error(f"Failed to {action} service", extra={"service_id": sid, "error": str(e)})
            self._audit(event, sid, False, {"error": str(e)})
            return Result.fail(str(e))

        if action == "start" and definition.id == ServiceId.CADDY and self.proxy_sync:
            synced = await self.proxy_sync.sync()
            if not synced.success:
                logger.warning(
                    "Failed to sync projects to Caddy on startup", extra={"error": synced.error}
                )

        past = {"start": "started", "stop": "stopped", "restart": "restarted"}[action]
        self._audit(event, sid, True)
        logger.info(f"Service {past}", extra={"service_id": sid})
        return Result.ok({"message": f"Service {sid} {past} successfully"})

    async def _run_post_install_hook(
        self, definition: ServiceDefinition, container_id: str, options: InstallOptions
    ) -> None:
        sid = definition.id.value
        hook = self.hooks.get(sid)
        if hook is None:
            return

        try:
            state = await self.container_manager.get_container_state(container_id)
            if state.exists and not state.running:
                logger.info("Starting container for post-install hook", extra={"service_id": sid})
                await self.container_manager.start_container(container_id)

            logger.info("Running post-install hook", extra={"service_id": sid})
            result = await hook(
                HookContext(
                    service_id=sid,
                    container_id=container_id,
                    custom_config=options.custom_config.to_dict() if options.custom_config else None,
                )
            )

            if definition.id == ServiceId.CADDY and result.data.get("cert_installed"):
                await self.set_caddy_cert_installed(True)

            if result.success:
                logger.info(
                    "Post-install hook completed",
                    extra={"service_id": sid, "hook_message": result.message},
                )
            else:
                logger.warning(
                    "Post-install hook failed",
                    extra={"service_id": sid, "hook_message": result.message},
                )
        except Exception as e:
            logger.error("Post-install hook raised", extra={"service_id": sid, "error": str(e)})

    def _audit(
        self, event: AuditEventType, target: str, success: bool, details: dict | None = None
    ) -> None:
        if self.audit_logger:
            self.audit_logger.log_event(event, target=target, success=success, details=details)
