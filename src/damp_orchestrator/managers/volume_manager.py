"""Volume lifecycle manager: named volumes and folder/volume transfers."""

import asyncio
import os
import re
import sys
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from docker import DockerClient
from docker.errors import APIError, ImageNotFound, NotFound
from docker.models.containers import Container as DockerContainer
from docker.models.volumes import Volume

from damp_orchestrator.config import Settings, get_settings
from damp_orchestrator.labels import (
    LabelKey,
    ResourceLabels,
    ResourceType,
    helper_container_labels,
    project_volume_labels,
)
from damp_orchestrator.service_config import volume_names_from_bindings
from damp_orchestrator.utils import get_logger
from damp_orchestrator.utils.cleanup import best_effort
from damp_orchestrator.utils.exceptions import (
    DockerAPIError,
    VolumeInUseError,
    VolumeNotFoundError,
    VolumeOperationError,
    WaitTimeoutError,
)
from damp_orchestrator.utils.metrics_collector import MetricsCollector

logger = get_logger(__name__)

RSYNC_PROGRESS_RE = re.compile(r"^\s+([\d,]+)\s+(\d+)%")


class HelperOperation(str, Enum):
    """Operations performed by short-lived helper containers."""

    VOLUME_COPY = "volume-copy"
    VOLUME_SYNC_TO = "volume-sync-to"
    VOLUME_SYNC_FROM = "volume-sync-from"
    LARAVEL_INSTALL = "laravel-install"


@dataclass(frozen=True)
class ProgressEvent:
    """One progress report of a long-running operation."""

    stage: str
    message: str
    current_step: int
    total_steps: int
    percentage: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "message": self.message,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "percentage": self.percentage,
        }


ProgressSink = Callable[[ProgressEvent], None]

COPY_STARTING = ProgressEvent("starting", "Starting copy operation...", 1, 3, 0)
COPY_COPYING = ProgressEvent("copying", "Copying files...", 2, 3, 50)
COPY_COMPLETED = ProgressEvent("completed", "Copy completed", 3, 3, 100)


def parse_rsync_progress(line: str) -> tuple[int, int] | None:
    """
    Parse one ``rsync --info=progress2`` line.

    Args:
        line: Output line, e.g. ``"      1,234,567  45%  123.45kB/s    0:00:12"``

    Returns:
        ``(bytes, percentage)`` or None when the line is not a progress line
    """
    match = RSYNC_PROGRESS_RE.match(line)
    if not match:
        return None
    return int(match.group(1).replace(",", "")), int(match.group(2))


def normalize_path_for_docker(local_path: str, platform: str | None = None) -> str:
    """
    Convert a host path to the form Docker accepts as a bind source.

    On Windows ``C:\\path\\to`` becomes ``/c/path/to``; other platforms are
    returned unchanged.
    """
    platform = platform or sys.platform
    if platform != "win32":
        return local_path
    path = local_path.replace("\\", "/")
    return re.sub(r"^([A-Za-z]):", lambda m: f"/{m.group(1).lower()}", path)


def host_uid_gid(platform: str | None = None) -> str:
    """Owner applied to copied files: the host user, or 1000:1000 on Windows."""
    platform = platform or sys.platform
    if platform == "win32" or not hasattr(os, "getuid"):
        return "1000:1000"
    return f"{os.getuid()}:{os.getgid()}"


def rsync_exclusions(include_node_modules: bool = False, include_vendor: bool = False) -> list[str]:
    exclusions = []
    if not include_node_modules:
        exclusions.append("--exclude=node_modules")
    if not include_vendor:
        exclusions.append("--exclude=vendor")
    return exclusions


class VolumeManager:
    """Manager for Docker volume lifecycle and helper-container transfers."""

    def __init__(
        self,
        docker_client: DockerClient,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize volume manager.

        Args:
            docker_client: Shared Docker client
            settings: Application settings
            metrics: Metrics collector
        """
        self.docker_client = docker_client
        self.settings = settings or get_settings()
        self.metrics = metrics

    async def volume_exists(self, volume_name: str) -> bool:
        try:
            await asyncio.to_thread(self.docker_client.volumes.get, volume_name)
        except NotFound:
            return False
        return True

    async def create_volume(self, volume_name: str, labels: ResourceLabels) -> bool:
        """
        Create a volume unless it already exists.

        Args:
            volume_name: Volume name
            labels: Ownership labels for a newly created volume

        Returns:
            True if the volume was created, False if it already existed

        Raises:
            DockerAPIError: If the daemon rejects the create
        """
        if await self.volume_exists(volume_name):
            logger.debug("Volume already exists", extra={"volume_name": volume_name})
            return False

        try:
            await asyncio.to_thread(
                self.docker_client.volumes.create,
                name=volume_name,
                labels=labels.to_labels(),
            )
        except APIError as e:
            logger.error(
                "Docker API error creating volume",
                extra={"volume_name": volume_name, "error": str(e)},
            )
            raise DockerAPIError(f"Failed to create volume {volume_name}: {e}", e)

        logger.info("Volume created", extra={"volume_name": volume_name})
        return True

    async def ensure_volumes(
        self,
        bindings: tuple[str, ...] | list[str],
        labels_by_volume: dict[str, ResourceLabels],
        default_labels: Callable[[str], ResourceLabels] | None = None,
    ) -> list[str]:
        """
        Create every named volume referenced by a set of bind specifications.

        Args:
            bindings: ``source:target`` bind strings
            labels_by_volume: Labels per volume name
            default_labels: Label factory for volumes missing from
                ``labels_by_volume``

        Returns:
            Names of volumes newly created by this call
        """
        created = []
        for name in volume_names_from_bindings(bindings):
            labels = labels_by_volume.get(name)
            if labels is None and default_labels is not None:
                labels = default_labels(name)
            if labels is None:
                labels = ResourceLabels(
                    type=ResourceType.SERVICE_VOLUME,
                    extra={LabelKey.VOLUME_NAME.value: name},
                )
            if await self.create_volume(name, labels):
                created.append(name)
        return created

    async def create_project_volume(self, volume_name: str, project_id: str) -> bool:
        return await self.create_volume(
            volume_name, project_volume_labels(project_id, volume_name)
        )

    async def remove_volume(self, volume_name: str) -> None:
        """
        Remove a volume.

        A volume that does not exist counts as removed, so the call is
        idempotent and tolerates concurrent removals.

        Args:
            volume_name: Volume name

        Raises:
            VolumeInUseError: If a container still uses the volume
            DockerAPIError: For any other daemon error
        """
        try:
            volume: Volume = await asyncio.to_thread(self.docker_client.volumes.get, volume_name)
            await asyncio.to_thread(volume.remove)
        except NotFound:
            logger.info(
                "Volume does not exist, skipping removal", extra={"volume_name": volume_name}
            )
            return
        except APIError as e:
            if e.status_code == 404 or "no such volume" in str(e).lower():
                logger.info(
                    "Volume does not exist, skipping removal",
                    extra={"volume_name": volume_name},
                )
                return
            if e.status_code == 409 or "volume is in use" in str(e).lower():
                raise VolumeInUseError(volume_name)
            logger.error(
                "Docker API error removing volume",
                extra={"volume_name": volume_name, "error": str(e)},
            )
            raise DockerAPIError(f"Failed to remove volume {volume_name}: {e}", e)

        logger.info("Volume removed", extra={"volume_name": volume_name})

    async def remove_service_volumes(self, volume_names: list[str]) -> list[str]:
        """
        Remove volumes by literal name, continuing past individual failures.

        Args:
            volume_names: Volume names

        Returns:
            Names that could not be removed
        """
        failed = []
        for name in volume_names:
            try:
                await self.remove_volume(name)
            except (VolumeInUseError, DockerAPIError) as e:
                logger.warning(
                    "Failed to remove service volume",
                    extra={"volume_name": name, "error": str(e)},
                )
                failed.append(name)
        return failed

    async def remove_service_volumes_by_label(self, service_id: str) -> list[str]:
        """
        Remove every service volume labelled with a service ID.

        Args:
            service_id: Owning service

        Returns:
            Names of volumes that were removed
        """
        filters = ResourceLabels(type=ResourceType.SERVICE_VOLUME, service_id=service_id)
        volumes = await self.list_volumes(filters.to_filters())
        removed = []
        for volume in volumes:
            try:
                await self.remove_volume(volume.name)
                removed.append(volume.name)
            except (VolumeInUseError, DockerAPIError) as e:
                logger.warning(
                    "Failed to remove labelled service volume",
                    extra={"volume_name": volume.name, "service_id": service_id, "error": str(e)},
                )
        return removed

    async def list_volumes(self, label_filters: list[str]) -> list[Volume]:
        try:
            return await asyncio.to_thread(
                self.docker_client.volumes.list, filters={"label": label_filters}
            )
        except APIError as e:
            raise DockerAPIError(f"Failed to list volumes: {e}", e)

    async def get_all_managed_volumes(self) -> list[Volume]:
        return await self.list_volumes([f"{LabelKey.MANAGED.value}=true"])

    async def copy_to_volume(
        self,
        source_path: str,
        volume_name: str,
        project_id: str,
        on_progress: ProgressSink | None = None,
    ) -> None:
        """
        Copy a host folder into the root of a volume through a helper container.

        ``node_modules`` and ``vendor`` are skipped and the copied tree is
        owned by the host user. The helper container is always removed.

        Args:
            source_path: Host folder
            volume_name: Target volume, created if missing
            project_id: Owning project
            on_progress: Optional progress sink

        Raises:
            VolumeOperationError: If the copy exits non-zero
            WaitTimeoutError: If the copy does not finish in time
            DockerAPIError: If Docker operations fail
        """
        await self.create_project_volume(volume_name, project_id)
        source = normalize_path_for_docker(source_path)
        uid_gid = host_uid_gid()

        logger.info(
            "Copying folder to volume",
            extra={"source_path": source_path, "volume_name": volume_name},
        )
        self._report(on_progress, COPY_STARTING)

        command = (
            "cd /source && tar --exclude='node_modules' --exclude='vendor' -cf - . "
            f"| tar -xf - -C /volume && chown -R {uid_gid} /volume"
        )
        started = time.monotonic()
        await self.run_helper(
            image=self.settings.helper_image,
            command=["sh", "-c", command],
            binds=[f"{source}:/source:ro", f"{volume_name}:/volume"],
            labels=helper_container_labels(
                HelperOperation.VOLUME_COPY.value, volume_name, project_id
            ),
            volume_name=volume_name,
            timeout_s=self.settings.volume_copy_timeout_s,
            on_started=lambda: self._report(on_progress, COPY_COPYING),
        )

        if self.metrics:
            self.metrics.record_volume_copy_duration(time.monotonic() - started)
        self._report(on_progress, COPY_COMPLETED)
        logger.info("Folder copied to volume", extra={"volume_name": volume_name})

    async def sync_to_volume(
        self,
        source_path: str,
        volume_name: str,
        project_id: str,
        include_node_modules: bool = False,
        include_vendor: bool = False,
        on_progress: ProgressSink | None = None,
    ) -> None:
        """
        Mirror a host folder into a volume with rsync.

        Args:
            source_path: Host folder
            volume_name: Target volume
            project_id: Owning project
            include_node_modules: Also transfer ``node_modules``
            include_vendor: Also transfer ``vendor``
            on_progress: Optional progress sink fed from rsync output
        """
        source = normalize_path_for_docker(source_path)
        exclusions = " ".join(rsync_exclusions(include_node_modules, include_vendor))
        command = (
            f"rsync -az --info=progress2 {exclusions} /source/ /volume/ && "
            f"chown -R {host_uid_gid()} /volume"
        )
        logger.info(
            "Syncing folder to volume",
            extra={"source_path": source_path, "volume_name": volume_name},
        )
        await self.run_helper(
            image=self.settings.sync_image,
            command=["sh", "-c", command],
            binds=[f"{source}:/source:ro", f"{volume_name}:/volume"],
            labels=helper_container_labels(
                HelperOperation.VOLUME_SYNC_TO.value, volume_name, project_id
            ),
            volume_name=volume_name,
            timeout_s=self.settings.volume_sync_timeout_s,
            on_output=self._rsync_progress_reporter(on_progress),
        )
        logger.info("Folder synced to volume", extra={"volume_name": volume_name})

    async def sync_from_volume(
        self,
        volume_name: str,
        target_path: str,
        project_id: str,
        include_node_modules: bool = False,
        include_vendor: bool = False,
        on_progress: ProgressSink | None = None,
    ) -> None:
        """
        Mirror a volume back into a host folder with rsync.

        Args:
            volume_name: Source volume, which must exist
            target_path: Host folder
            project_id: Owning project
            include_node_modules: Also transfer ``node_modules``
            include_vendor: Also transfer ``vendor``
            on_progress: Optional progress sink fed from rsync output

        Raises:
            VolumeNotFoundError: If the volume does not exist
        """
        if not await self.volume_exists(volume_name):
            raise VolumeNotFoundError(volume_name)

        target = normalize_path_for_docker(target_path)
        exclusions = " ".join(rsync_exclusions(include_node_modules, include_vendor))
        command = (
            "rsync -az --info=progress2 --no-perms --no-owner --no-group "
            f"--chmod=ugo=rwX {exclusions} /volume/ /target/"
        )
        logger.info(
            "Syncing volume to folder",
            extra={"volume_name": volume_name, "target_path": target_path},
        )
        await self.run_helper(
            image=self.settings.sync_image,
            command=["sh", "-c", command],
            binds=[f"{volume_name}:/volume:ro", f"{target}:/target"],
            labels=helper_container_labels(
                HelperOperation.VOLUME_SYNC_FROM.value, volume_name, project_id
            ),
            volume_name=volume_name,
            timeout_s=self.settings.volume_sync_timeout_s,
            on_output=self._rsync_progress_reporter(on_progress),
        )
        logger.info("Volume synced to folder", extra={"volume_name": volume_name})

    async def run_helper(
        self,
        image: str,
        command: list[str],
        binds: list[str],
        labels: ResourceLabels,
        volume_name: str,
        timeout_s: float,
        on_started: Callable[[], None] | None = None,
        on_output: Callable[[str], None] | None = None,
        environment: list[str] | None = None,
    ) -> None:
        """
        Run a one-shot helper container to completion and remove it.

        Abandoning the awaiting task (cancellation) still removes the helper.

        Args:
            image: Helper image, pulled when missing
            command: Command to run
            binds: Bind specifications
            labels: Helper container labels
            volume_name: Volume the operation targets, used in errors
            timeout_s: Bound on the helper's run time
            on_started: Called once the helper is running
            on_output: Called for each stdout line
            environment: Extra environment variables

        Raises:
            VolumeOperationError: If the helper exits non-zero
            WaitTimeoutError: If the helper does not finish within ``timeout_s``
            DockerAPIError: If Docker operations fail
        """
        await self._ensure_image(image)
        try:
            container: DockerContainer = await asyncio.to_thread(
                self.docker_client.containers.create,
                image,
                command=command,
                labels=labels.to_labels(),
                volumes=binds,
                environment=environment or [],
                user="0:0",
            )
        except APIError as e:
            raise DockerAPIError(f"Failed to create helper container: {e}", e)

        pump: asyncio.Task | None = None
        try:
            await asyncio.to_thread(container.start)
            if on_started:
                on_started()
            if on_output:
                pump = asyncio.create_task(self._pump_output(container, on_output))

            try:
                result = await asyncio.wait_for(
                    asyncio.to_thread(container.wait), timeout=timeout_s
                )
            except asyncio.TimeoutError:
                raise WaitTimeoutError(f"helper operation on volume {volume_name}", timeout_s)

            exit_code = result.get("StatusCode", -1)
            if exit_code != 0:
                logs = await asyncio.to_thread(container.logs, stdout=True, stderr=True)
                log_text = logs.decode("utf-8", errors="replace").strip()
                message = f"Helper operation failed with exit code {exit_code}"
                if log_text:
                    message = f"{message}: {log_text}"
                raise VolumeOperationError(volume_name, message)
        except APIError as e:
            raise DockerAPIError(f"Helper container failed: {e}", e)
        finally:
            if pump is not None:
                pump.cancel()
            async with best_effort("remove helper container", container_id=container.id):
                await asyncio.to_thread(container.remove, force=True)

    async def _pump_output(self, container: DockerContainer, on_output: Callable[[str], None]) -> None:
        stream = await asyncio.to_thread(
            container.logs, stdout=True, stderr=False, stream=True, follow=True
        )
        iterator = iter(stream)
        try:
            while True:
                chunk = await asyncio.to_thread(next, iterator, None)
                if chunk is None:
                    break
                text = chunk.decode("utf-8", errors="replace")
                # rsync rewrites its progress line with carriage returns
                for line in re.split(r"[\r\n]", text):
                    if line:
                        on_output(line)
        finally:
            close = getattr(stream, "close", None)
            if close:
                async with best_effort("close helper log stream"):
                    close()

    async def _ensure_image(self, image: str) -> None:
        try:
            await asyncio.to_thread(self.docker_client.images.get, image)
        except ImageNotFound:
            logger.info("Pulling helper image", extra={"image": image})
            try:
                await asyncio.to_thread(self.docker_client.images.pull, image)
            except APIError as e:
                raise DockerAPIError(f"Failed to pull helper image {image}: {e}", e)

    @staticmethod
    def _report(sink: ProgressSink | None, event: ProgressEvent) -> None:
        if sink:
            sink(event)

    @staticmethod
    def _rsync_progress_reporter(sink: ProgressSink | None) -> Callable[[str], None] | None:
        if sink is None:
            return None

        def report(line: str) -> None:
            parsed = parse_rsync_progress(line)
            if parsed is None:
                return
            transferred, percentage = parsed
            sink(
                ProgressEvent(
                    stage="syncing",
                    message=f"Synced {transferred} bytes",
                    current_step=1,
                    total_steps=1,
                    percentage=percentage,
                )
            )

        return report
