"""Container lifecycle manager for Docker operations."""

import asyncio
import io
import posixpath
import tarfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from docker import DockerClient
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.models.containers import Container as DockerContainer

from damp_orchestrator.config import Settings, get_settings
from damp_orchestrator.labels import (
    LabelKey,
    ResourceLabels,
    ResourceType,
    managed_filter,
    project_volume_labels,
    service_volume_labels,
)
from damp_orchestrator.managers.port_resolver import PortResolver
from damp_orchestrator.managers.volume_manager import VolumeManager
from damp_orchestrator.models.database import DatabaseManager
from damp_orchestrator.repositories import ImagePullRepository
from damp_orchestrator.service_config import CustomConfig, ServiceConfig, merge_configs
from damp_orchestrator.utils import get_logger
from damp_orchestrator.utils.cleanup import best_effort, best_effort_sync
from damp_orchestrator.utils.exceptions import (
    ArchiveTooLargeError,
    ContainerExitedError,
    ContainerNotFoundError,
    DockerAPIError,
    DockerDaemonUnreachableError,
    ExecExitCodeUnavailableError,
    ExecStreamError,
    FileNotInArchiveError,
    ImagePullError,
    WaitTimeoutError,
)
from damp_orchestrator.utils.metrics_collector import MetricsCollector

logger = get_logger(__name__)

HEALTH_STATUSES = {"starting", "healthy", "unhealthy"}
FATAL_STATES = {"exited", "dead"}


class WaitOutcome(str, Enum):
    """Result of waiting for a container to reach the running state."""

    RUNNING = "running"
    TIMEOUT = "timeout"
    FATAL = "fatal"
    MISSING = "missing"


@dataclass
class ContainerState:
    """Live view of a container, recomputed from an inspect call."""

    exists: bool
    running: bool = False
    container_id: str | None = None
    container_name: str | None = None
    state: str | None = None
    # (host port, container port)
    ports: list[tuple[int, int]] = field(default_factory=list)
    health_status: str = "none"
    environment_vars: list[str] = field(default_factory=list)

    @classmethod
    def not_found(cls) -> "ContainerState":
        """The canonical value for a container that does not exist."""
        return cls(exists=False)

    @classmethod
    def from_attrs(cls, attrs: dict[str, Any]) -> "ContainerState":
        """
        Build from ``docker inspect`` output.

        Args:
            attrs: Container attributes as returned by the Engine API

        Returns:
            Container state
        """
        state = attrs.get("State") or {}
        config = attrs.get("Config") or {}
        network_ports = (attrs.get("NetworkSettings") or {}).get("Ports") or {}

        ports = []
        for internal, bindings in network_ports.items():
            if not bindings:
                continue
            host_port = bindings[0].get("HostPort")
            if not host_port:
                continue
            ports.append((int(host_port), int(internal.split("/")[0])))

        health = (state.get("Health") or {}).get("Status")
        name = attrs.get("Name") or ""

        return cls(
            exists=True,
            running=bool(state.get("Running")),
            container_id=attrs.get("Id"),
            container_name=name.lstrip("/") or None,
            state=state.get("Status"),
            ports=ports,
            health_status=health if health in HEALTH_STATUSES else "none",
            environment_vars=list(config.get("Env") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "exists": self.exists,
            "running": self.running,
            "container_id": self.container_id,
            "container_name": self.container_name,
            "state": self.state,
            "ports": [list(pair) for pair in self.ports],
            "health_status": self.health_status,
            "environment_vars": list(self.environment_vars),
        }


@dataclass
class CreateContainerOptions:
    """Identity of a container about to be created."""

    labels: ResourceLabels
    # Labels per named volume in the bindings; missing volumes get labels
    # derived from the container's owner
    volume_labels: dict[str, ResourceLabels] = field(default_factory=dict)
    name: str | None = None


@dataclass
class ExecResult:
    """Outcome of a command executed inside a container."""

    exit_code: int
    stdout: str
    stderr: str
    raw_stdout: bytes = b""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


LogLineSink = Callable[[str, str], None]


class LogStream:
    """
    Handle for a following log subscription.

    :meth:`stop` may be called any number of times, including after the
    container's log stream has already ended. The handle also closes itself
    once every underlying stream has run out.
    """

    def __init__(self, container_id: str, on_closed: Callable[["LogStream"], None] | None = None):
        """
        Initialize log stream handle.

        Args:
            container_id: Container being followed
            on_closed: Called once when the stream stops
        """
        self.container_id = container_id
        self._streams: list[Any] = []
        self._tasks: list[asyncio.Task] = []
        self._drained = 0
        self._stopped = False
        self._on_closed = on_closed

    @property
    def stopped(self) -> bool:
        return self._stopped

    def _attach(self, stream: Any, task: asyncio.Task) -> None:
        self._streams.append(stream)
        self._tasks.append(task)

    def _pump_finished(self) -> None:
        self._drained += 1
        if self._drained == len(self._tasks) and not self._stopped:
            self._close()
            logger.debug("Log stream ended", extra={"container_id": self.container_id})

    def stop(self) -> None:
        """Stop following. Idempotent."""
        if self._stopped:
            return
        for task in self._tasks:
            task.cancel()
        self._close()
        logger.debug("Log stream stopped", extra={"container_id": self.container_id})

    def _close(self) -> None:
        self._stopped = True
        for stream in self._streams:
            with best_effort_sync("close log stream", container_id=self.container_id):
                stream.close()
        if self._on_closed:
            self._on_closed(self)

    async def aclose(self) -> None:
        """Stop following and wait for the pump tasks to finish."""
        self.stop()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


def is_latest_image(image: str) -> bool:
    """
    Check whether an image reference floats on ``latest``.

    Untagged references count as ``latest``. A ``host:port/`` registry
    prefix is not a tag; digest references are pinned.
    """
    if "@" in image:
        return False
    last_segment = image.rsplit("/", 1)[-1]
    return ":" not in last_segment or last_segment.endswith(":latest")


def build_tar(filename: str, content: bytes) -> bytes:
    """Wrap a single file into an in-memory tar archive."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        info = tarfile.TarInfo(name=filename)
        info.size = len(content)
        info.mtime = int(time.time())
        info.mode = 0o644
        archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def read_first_file(tar_bytes: bytes) -> bytes | None:
    """Return the content of the first regular file in a tar archive."""
    with tarfile.open(fileobj=io.BytesIO(tar_bytes), mode="r") as archive:
        for member in archive:
            if member.isfile():
                extracted = archive.extractfile(member)
                if extracted is not None:
                    return extracted.read()
    return None


class ContainerManager:
    """Manager for Docker container lifecycle operations."""

    def __init__(
        self,
        docker_client: DockerClient,
        db_manager: DatabaseManager,
        settings: Settings | None = None,
        volume_manager: VolumeManager | None = None,
        port_resolver: PortResolver | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize container manager.

        Args:
            docker_client: Shared Docker client
            db_manager: Database manager holding image pull timestamps
            settings: Application settings
            volume_manager: Volume manager used for bound volumes
            port_resolver: Host port resolver
            metrics: Metrics collector
        """
        self.docker_client = docker_client
        self.db_manager = db_manager
        self.settings = settings or get_settings()
        self.metrics = metrics
        self.volume_manager = volume_manager or VolumeManager(
            docker_client, self.settings, metrics
        )
        self.port_resolver = port_resolver or PortResolver(self.settings.port_scan_attempts)
        self._log_streams: set[LogStream] = set()

    # Daemon

    async def is_docker_available(self) -> bool:
        """
        Ping the daemon within the configured timeout.

        Returns:
            True if the daemon answered
        """
        timeout = self.settings.docker_ping_timeout_ms / 1000
        try:
            await asyncio.wait_for(asyncio.to_thread(self.docker_client.ping), timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("Docker ping timed out", extra={"timeout_s": timeout})
        except (DockerException, OSError) as e:
            logger.warning("Docker ping failed", extra={"error": str(e)})
        return False

    async def require_docker(self) -> None:
        """
        Raises:
            DockerDaemonUnreachableError: If the daemon does not answer a ping
        """
        if not await self.is_docker_available():
            raise DockerDaemonUnreachableError()

    async def ensure_network(self) -> None:
        """Create the shared bridge network if it does not exist."""
        name = self.settings.network_name
        try:
            networks = await asyncio.to_thread(self.docker_client.networks.list, names=[name])
            if any(network.name == name for network in networks):
                return
            await asyncio.to_thread(
                self.docker_client.networks.create,
                name,
                driver="bridge",
                labels={LabelKey.MANAGED.value: "true"},
            )
            logger.info("Docker network created", extra={"network": name})
        except APIError as e:
            logger.error("Docker API error ensuring network", extra={"error": str(e)})
            raise DockerAPIError(f"Failed to ensure network {name}: {e}", e)

    async def pull_image(self, image: str, force: bool = False) -> bool:
        """
        Pull an image when needed.

        A present image with a pinned tag is never pulled again. A ``latest``
        image is pulled when it was never pulled by us or the last recorded
        pull is older than the refresh threshold. Successful pulls are
        recorded.

        Args:
            image: Image reference
            force: Pull even if the image is present and fresh

        Returns:
            True if the image was pulled

        Raises:
            ImagePullError: If the pull fails
        """
        exists = await self._image_exists(image)

        if exists and not force:
            if not is_latest_image(image):
                logger.debug("Image already present", extra={"image": image})
                self._record_pull("skipped")
                return False

            async with self.db_manager.get_session() as session:
                last_pull = await ImagePullRepository(session).get_last_pull(image)

            threshold = timedelta(days=self.settings.image_refresh_days)
            if last_pull is not None and datetime.now(timezone.utc) - last_pull < threshold:
                logger.debug("Image pulled recently, skipping", extra={"image": image})
                self._record_pull("skipped")
                return False

            logger.info(
                "Refreshing latest image",
                extra={"image": image, "last_pull": last_pull.isoformat() if last_pull else None},
            )

        logger.info("Pulling image", extra={"image": image, "force": force})
        try:
            await asyncio.to_thread(self.docker_client.images.pull, image)
        except (APIError, DockerException) as e:
            logger.error("Failed to pull image", extra={"image": image, "error": str(e)})
            self._record_pull("failed")
            raise ImagePullError(image, e)

        async with self.db_manager.get_session() as session:
            await ImagePullRepository(session).record_pull(image)

        self._record_pull("pulled")
        logger.info("Image pulled", extra={"image": image})
        return True

    async def _image_exists(self, image: str) -> bool:
        try:
            await asyncio.to_thread(self.docker_client.images.get, image)
        except ImageNotFound:
            return False
        except APIError as e:
            raise DockerAPIError(f"Failed to inspect image {image}: {e}", e)
        return True

    # Lifecycle

    async def create_container(
        self,
        config: ServiceConfig,
        options: CreateContainerOptions,
        custom: CustomConfig | None = None,
    ) -> str:
        """
        Create a container on the shared network.

        Host ports may differ from the configured ones when those are taken;
        callers re-read :meth:`get_container_state` for the actual bindings.

        Args:
            config: Default configuration
            options: Labels, volume labels and container name
            custom: Optional user override merged into ``config``

        Returns:
            Docker container ID

        Raises:
            PortUnavailableError: If a host port cannot be resolved
            DockerAPIError: If Docker operations fail
        """
        await self.ensure_network()

        final = merge_configs(config, custom)
        mappings = await asyncio.to_thread(
            self.port_resolver.resolve_port_mappings, list(final.ports)
        )

        owner = options.labels

        def default_volume_labels(name: str) -> ResourceLabels:
            if owner.project_id and owner.type != ResourceType.SERVICE_CONTAINER:
                return project_volume_labels(owner.project_id, name)
            return service_volume_labels(owner.service_id or "", name)

        await self.volume_manager.ensure_volumes(
            final.volume_bindings, options.volume_labels, default_volume_labels
        )

        create_kwargs: dict[str, Any] = {
            "environment": list(final.environment_vars),
            "labels": owner.to_labels(),
            "ports": {
                f"{internal}/tcp": ("0.0.0.0", external) for external, internal in mappings
            },
            "restart_policy": {"Name": "unless-stopped"},
            "volumes": list(final.volume_bindings),
            "network": self.settings.network_name,
            "detach": True,
        }
        name = options.name or final.container_name
        if name:
            create_kwargs["name"] = name
        if final.healthcheck is not None:
            create_kwargs["healthcheck"] = final.healthcheck.to_docker()

        try:
            container: DockerContainer = await asyncio.to_thread(
                self.docker_client.containers.create, final.image, **create_kwargs
            )
        except APIError as e:
            self._record_operation("create", "failure")
            logger.error(
                "Docker API error creating container",
                extra={"image": final.image, "error": str(e)},
            )
            raise DockerAPIError(f"Failed to create container: {e}", e)

        self._record_operation("create")
        logger.info(
            "Docker container created",
            extra={
                "docker_id": container.id,
                "image": final.image,
                "container_name": name,
                "resource_type": owner.type.value,
                "ports": [list(pair) for pair in mappings],
            },
        )
        return container.id

    async def start_container(self, ref: str) -> None:
        """
        Start a container.

        Args:
            ref: Container ID or name

        Raises:
            ContainerNotFoundError: If container not found
            DockerAPIError: If Docker operations fail
        """
        container = await self._get(ref)
        await self._act(container, "start", container.start)

    async def stop_container(self, ref: str, timeout: int | None = None) -> None:
        """
        Stop a container, killing it after the grace timeout.

        Args:
            ref: Container ID or name
            timeout: Grace period in seconds, defaults to settings

        Raises:
            ContainerNotFoundError: If container not found
            DockerAPIError: If Docker operations fail
        """
        container = await self._get(ref)
        grace = timeout if timeout is not None else self.settings.stop_timeout_s
        await self._act(container, "stop", container.stop, timeout=grace)

    async def restart_container(self, ref: str, timeout: int | None = None) -> None:
        container = await self._get(ref)
        grace = timeout if timeout is not None else self.settings.stop_timeout_s
        await self._act(container, "restart", container.restart, timeout=grace)

    async def remove_container(self, ref: str, remove_volumes: bool = False) -> None:
        """
        Force-remove a container, whether running or not.

        No graceful stop is attempted first.

        Args:
            ref: Container ID or name
            remove_volumes: Also remove anonymous volumes

        Raises:
            ContainerNotFoundError: If container not found
            DockerAPIError: If Docker operations fail
        """
        container = await self._get(ref)
        await self._act(container, "remove", container.remove, force=True, v=remove_volumes)

    async def _get(self, ref: str) -> DockerContainer:
        try:
            return await asyncio.to_thread(self.docker_client.containers.get, ref)
        except NotFound:
            raise ContainerNotFoundError(ref)
        except APIError as e:
            raise DockerAPIError(f"Failed to inspect container {ref}: {e}", e)

    async def _act(self, container: DockerContainer, operation: str, action: Callable, **kwargs: Any) -> None:
        try:
            await asyncio.to_thread(action, **kwargs)
        except NotFound:
            self._record_operation(operation, "failure")
            raise ContainerNotFoundError(container.id)
        except APIError as e:
            self._record_operation(operation, "failure")
            logger.error(
                f"Docker API error during container {operation}",
                extra={"docker_id": container.id, "error": str(e)},
            )
            raise DockerAPIError(f"Failed to {operation} container: {e}", e)

        self._record_operation(operation)
        logger.info(f"Docker container {operation} completed", extra={"docker_id": container.id})

    # Lookup and state

    async def find_container_by_labels(
        self, labels: ResourceLabels | list[str]
    ) -> DockerContainer | None:
        """
        Find the first container whose labels match every filter.

        Args:
            labels: Typed labels or ``key=value`` filters

        Returns:
            Matching container or None
        """
        filters = labels.to_filters() if isinstance(labels, ResourceLabels) else list(labels)
        try:
            containers = await asyncio.to_thread(
                self.docker_client.containers.list, all=True, filters={"label": filters}
            )
        except (DockerException, OSError) as e:
            logger.error(
                "Failed to find container by labels",
                extra={"filters": filters, "error": str(e)},
            )
            return None
        return containers[0] if containers else None

    async def find_service_container(
        self, service_id: str, project_id: str | None = None
    ) -> DockerContainer | None:
        """
        Find a shared service container, or a project's bundled one.

        Args:
            service_id: Service ID
            project_id: Owning project for bundled services
        """
        if project_id:
            labels = ResourceLabels(
                type=ResourceType.BUNDLED_SERVICE_CONTAINER,
                project_id=project_id,
                service_id=service_id,
            )
        else:
            labels = ResourceLabels(type=ResourceType.SERVICE_CONTAINER, service_id=service_id)
        return await self.find_container_by_labels(labels)

    async def find_project_container(self, project_id: str) -> DockerContainer | None:
        return await self.find_container_by_labels(
            ResourceLabels(type=ResourceType.PROJECT_CONTAINER, project_id=project_id)
        )

    async def get_container_state(self, ref: str) -> ContainerState:
        """
        Inspect a container.

        Never raises: a missing container, or one that cannot be inspected,
        yields :meth:`ContainerState.not_found`.

        Args:
            ref: Container ID or name

        Returns:
            Live container state
        """
        try:
            container = await asyncio.to_thread(self.docker_client.containers.get, ref)
        except NotFound:
            return ContainerState.not_found()
        except (DockerException, OSError) as e:
            logger.error("Failed to get container state", extra={"ref": ref, "error": str(e)})
            return ContainerState.not_found()
        return ContainerState.from_attrs(container.attrs)

    async def get_container_state_by_labels(
        self, labels: ResourceLabels | list[str]
    ) -> ContainerState:
        container = await self.find_container_by_labels(labels)
        if container is None:
            return ContainerState.not_found()
        return await self.get_container_state(container.id)

    async def wait_for_running(
        self,
        ref: str,
        timeout: float | None = None,
        interval: float | None = None,
    ) -> WaitOutcome:
        """
        Poll until a container is running.

        Args:
            ref: Container ID or name
            timeout: Overall bound in seconds
            interval: Poll interval in seconds

        Returns:
            RUNNING on success, FATAL if the container exited or died,
            MISSING if it does not exist, TIMEOUT if the bound elapsed
        """
        timeout = timeout if timeout is not None else self.settings.running_wait_timeout_s
        interval = interval if interval is not None else self.settings.running_wait_interval_s
        deadline = time.monotonic() + timeout

        while True:
            state = await self.get_container_state(ref)
            if not state.exists:
                return WaitOutcome.MISSING
            if state.state in FATAL_STATES:
                logger.error(
                    "Container entered fatal state",
                    extra={"ref": ref, "state": state.state},
                )
                return WaitOutcome.FATAL
            if state.running and state.state == "running":
                return WaitOutcome.RUNNING
            if time.monotonic() + interval > deadline:
                logger.error(
                    "Timeout waiting for container to run",
                    extra={"ref": ref, "timeout_s": timeout},
                )
                return WaitOutcome.TIMEOUT
            await asyncio.sleep(interval)

    async def ensure_running(self, ref: str, timeout: float | None = None) -> None:
        """
        Wait for a container to run, raising on every other outcome.

        Raises:
            ContainerNotFoundError: If the container does not exist
            ContainerExitedError: If it exited or died
            WaitTimeoutError: If it did not come up in time
        """
        outcome = await self.wait_for_running(ref, timeout=timeout)
        if outcome is WaitOutcome.MISSING:
            raise ContainerNotFoundError(ref)
        if outcome is WaitOutcome.FATAL:
            state = await self.get_container_state(ref)
            raise ContainerExitedError(ref, state.state or "exited")
        if outcome is WaitOutcome.TIMEOUT:
            raise WaitTimeoutError(
                f"container {ref} to run",
                timeout if timeout is not None else self.settings.running_wait_timeout_s,
            )

    async def get_all_managed_containers(self) -> list[DockerContainer]:
        """
        List every managed container, running or not.

        Raises:
            DockerAPIError: If the daemon cannot list containers
        """
        try:
            return await asyncio.to_thread(
                self.docker_client.containers.list,
                all=True,
                filters={"label": managed_filter()},
            )
        except APIError as e:
            raise DockerAPIError(f"Failed to list managed containers: {e}", e)

    async def list_containers(self, labels: ResourceLabels | list[str]) -> list[DockerContainer]:
        filters = labels.to_filters() if isinstance(labels, ResourceLabels) else list(labels)
        try:
            return await asyncio.to_thread(
                self.docker_client.containers.list, all=True, filters={"label": filters}
            )
        except APIError as e:
            raise DockerAPIError(f"Failed to list containers: {e}", e)

    async def remove_containers_by_labels(self, labels: ResourceLabels | list[str]) -> int:
        """
        Force-remove every container matching the labels.

        Returns:
            Number of containers removed
        """
        removed = 0
        for container in await self.list_containers(labels):
            await self.remove_container(container.id)
            removed += 1
        return removed

    # Exec and files

    async def exec_command(
        self,
        ref: str,
        cmd: list[str] | str,
        user: str = "",
        workdir: str | None = None,
        environment: dict[str, str] | None = None,
    ) -> ExecResult:
        """
        Run a command inside a container and collect its output.

        Args:
            ref: Container ID or name
            cmd: Command to run
            user: User to run as
            workdir: Working directory
            environment: Extra environment variables

        Returns:
            Exit code and demultiplexed, stripped output

        Raises:
            ContainerNotFoundError: If container not found
            ExecStreamError: If the exec call or its output stream failed
            ExecExitCodeUnavailableError: If the command reported no exit code
        """
        container = await self._get(ref)
        try:
            result = await asyncio.to_thread(
                container.exec_run,
                cmd,
                demux=True,
                user=user,
                workdir=workdir,
                environment=environment,
            )
        except (APIError, OSError) as e:
            logger.error("Exec stream failed", extra={"ref": ref, "error": str(e)})
            raise ExecStreamError(ref, e)

        if result.exit_code is None:
            raise ExecExitCodeUnavailableError(ref)

        stdout_data, stderr_data = result.output or (None, None)
        stdout_data = stdout_data or b""
        stderr_data = stderr_data or b""

        logger.debug(
            "Exec completed",
            extra={"ref": ref, "exit_code": result.exit_code, "stdout_bytes": len(stdout_data)},
        )
        return ExecResult(
            exit_code=result.exit_code,
            stdout=stdout_data.decode("utf-8", errors="replace").strip(),
            stderr=stderr_data.decode("utf-8", errors="replace").strip(),
            raw_stdout=stdout_data,
        )

    async def get_file(self, ref: str, path: str, max_size: int | None = None) -> bytes:
        """
        Read one file out of a container through the archive API.

        Args:
            ref: Container ID or name
            path: Absolute path inside the container
            max_size: Byte cap on the archive, defaults to settings

        Returns:
            File content

        Raises:
            ContainerNotFoundError: If container not found
            FileNotInArchiveError: If the path does not exist or is not a file
            ArchiveTooLargeError: If the archive exceeds ``max_size``
        """
        max_size = max_size if max_size is not None else self.settings.max_archive_bytes
        container = await self._get(ref)
        try:
            bits, stat = await asyncio.to_thread(container.get_archive, path)
        except NotFound:
            raise FileNotInArchiveError(path)
        except APIError as e:
            raise DockerAPIError(f"Failed to read {path} from container: {e}", e)

        size = (stat or {}).get("size", 0)
        if size > max_size:
            raise ArchiveTooLargeError(path, size, max_size)

        tar_bytes = await asyncio.to_thread(self._collect_archive, bits, path, max_size)
        content = await asyncio.to_thread(read_first_file, tar_bytes)
        if content is None:
            raise FileNotInArchiveError(path)
        return content

    @staticmethod
    def _collect_archive(chunks: Any, path: str, max_size: int) -> bytes:
        buffer = bytearray()
        for chunk in chunks:
            buffer.extend(chunk)
            if len(buffer) > max_size:
                raise ArchiveTooLargeError(path, len(buffer), max_size)
        return bytes(buffer)

    async def put_file(self, ref: str, path: str, content: bytes) -> None:
        """
        Write one file into a container through the archive API.

        Args:
            ref: Container ID or name
            path: Absolute destination path
            content: File content

        Raises:
            ContainerNotFoundError: If container not found
            DockerAPIError: If the upload fails
        """
        directory, filename = posixpath.split(path)
        container = await self._get(ref)
        archive = build_tar(filename, content)
        try:
            ok = await asyncio.to_thread(container.put_archive, directory or "/", archive)
        except APIError as e:
            raise DockerAPIError(f"Failed to upload {path} to container: {e}", e)
        if not ok:
            raise DockerAPIError(f"Failed to upload {path} to container")
        logger.debug("File uploaded to container", extra={"ref": ref, "path": path, "size": len(content)})

    # Logs

    async def stream_logs(
        self, ref: str, on_line: LogLineSink, tail: int | None = None
    ) -> LogStream:
        """
        Follow a container's logs line by line.

        The last ``tail`` lines are delivered first, then new lines as they
        arrive, each tagged ``stdout`` or ``stderr``.

        Args:
            ref: Container ID or name
            on_line: Called with ``(line, stream_name)``
            tail: Number of historical lines

        Returns:
            Caller-owned handle; call ``stop()`` to unsubscribe

        Raises:
            ContainerNotFoundError: If container not found
        """
        tail = tail if tail is not None else self.settings.log_tail_lines
        container = await self._get(ref)
        streams = {}
        for stream_name in ("stdout", "stderr"):
            try:
                streams[stream_name] = await asyncio.to_thread(
                    container.logs,
                    stdout=stream_name == "stdout",
                    stderr=stream_name == "stderr",
                    stream=True,
                    follow=True,
                    tail=tail,
                )
            except APIError as e:
                for opened in streams.values():
                    with best_effort_sync("close log stream", container_id=container.id):
                        opened.close()
                raise DockerAPIError(f"Failed to stream logs: {e}", e)

        handle = LogStream(container.id, on_closed=self._log_streams.discard)
        self._log_streams.add(handle)
        # Both pumps are attached before either can run
        for stream_name, stream in streams.items():
            task = asyncio.create_task(self._pump_logs(handle, stream, stream_name, on_line))
            handle._attach(stream, task)

        logger.debug("Log stream opened", extra={"docker_id": container.id, "tail": tail})
        return handle

    async def _pump_logs(
        self, handle: LogStream, stream: Any, stream_name: str, on_line: LogLineSink
    ) -> None:
        iterator = iter(stream)
        pending = ""
        try:
            while not handle.stopped:
                chunk = await asyncio.to_thread(next, iterator, None)
                if chunk is None:
                    break
                pending += chunk.decode("utf-8", errors="replace")
                *lines, pending = pending.split("\n")
                for line in lines:
                    if line.strip():
                        on_line(line.strip(), stream_name)
            if pending.strip() and not handle.stopped:
                on_line(pending.strip(), stream_name)
        except (DockerException, OSError) as e:
            if not handle.stopped:
                logger.warning(
                    "Log stream ended with error",
                    extra={"docker_id": handle.container_id, "error": str(e)},
                )
        finally:
            handle._pump_finished()

    @property
    def open_log_streams(self) -> int:
        return len(self._log_streams)

    async def close_all_log_streams(self) -> int:
        """
        Stop every open log subscription.

        Returns:
            Number of streams closed
        """
        streams = list(self._log_streams)
        for handle in streams:
            async with best_effort("close log stream", container_id=handle.container_id):
                await handle.aclose()
        return len(streams)

    # Metrics

    def _record_operation(self, operation: str, status: str = "success") -> None:
        if self.metrics:
            self.metrics.record_container_operation(operation, status)

    def _record_pull(self, result: str) -> None:
        if self.metrics:
            self.metrics.record_image_pull(result)

