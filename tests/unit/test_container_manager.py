"""Unit tests for ContainerManager."""

import asyncio
import queue
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, NotFound

from damp_orchestrator.labels import service_container_labels
from damp_orchestrator.managers.container_manager import (
    ContainerManager,
    ContainerState,
    CreateContainerOptions,
    WaitOutcome,
    build_tar,
    is_latest_image,
    read_first_file,
)
from damp_orchestrator.managers.port_resolver import PortResolver
from damp_orchestrator.repositories import ImagePullRepository
from damp_orchestrator.service_config import CustomConfig, ServiceConfig
from damp_orchestrator.utils.exceptions import (
    ArchiveTooLargeError,
    ContainerExitedError,
    ContainerNotFoundError,
    DockerAPIError,
    ExecExitCodeUnavailableError,
    ExecStreamError,
    FileNotInArchiveError,
    ImagePullError,
)
from damp_orchestrator.utils.metrics_collector import MetricsCollector


@pytest.fixture
def mock_docker_client():
    """Create mock Docker client."""
    client = MagicMock()
    client.networks.list.return_value = []
    return client


@pytest.fixture
def mock_container():
    """Create mock Docker container."""
    container = MagicMock()
    container.id = "docker123"
    container.name = "damp-mysql"
    return container


@pytest.fixture
def manager(mock_docker_client, mock_container, db_manager, settings, volume_manager):
    mock_docker_client.containers.get.return_value = mock_container
    return ContainerManager(
        mock_docker_client,
        db_manager,
        settings=settings,
        volume_manager=volume_manager,
        port_resolver=PortResolver(checker=lambda port: True),
        metrics=MetricsCollector(),
    )


def attrs(status="running", running=True, health=None, ports=None, env=None):
    state = {"Status": status, "Running": running}
    if health:
        state["Health"] = {"Status": health}
    return {
        "Id": "docker123",
        "Name": "/damp-mysql",
        "State": state,
        "Config": {"Env": env or []},
        "NetworkSettings": {"Ports": ports or {}},
    }


def test_state_from_attrs():
    state = ContainerState.from_attrs(
        attrs(
            health="healthy",
            ports={
                "3306/tcp": [{"HostIp": "0.0.0.0", "HostPort": "3307"}],
                "33060/tcp": None,
            },
            env=["A=1"],
        )
    )

    assert state.exists and state.running
    assert state.container_name == "damp-mysql"
    assert state.ports == [(3307, 3306)]
    assert state.health_status == "healthy"
    assert state.environment_vars == ["A=1"]


def test_state_without_healthcheck_reports_none():
    assert ContainerState.from_attrs(attrs()).health_status == "none"
    assert ContainerState.not_found().to_dict()["exists"] is False


@pytest.mark.parametrize(
    "image,expected",
    [
        ("mysql", True),
        ("mysql:latest", True),
        ("caddy:2.8", False),
        ("localhost:5000/app", True),
        ("localhost:5000/app:1.0", False),
        ("redis@sha256:abc", False),
    ],
)
def test_is_latest_image(image, expected):
    assert is_latest_image(image) is expected


def test_tar_helpers():
    assert read_first_file(build_tar("Caddyfile", b"content")) == b"content"


@pytest.mark.asyncio
async def test_docker_unavailable_on_ping_error(manager, mock_docker_client):
    mock_docker_client.ping.side_effect = OSError("socket missing")

    assert await manager.is_docker_available() is False


@pytest.mark.asyncio
async def test_ensure_network_creates_missing_network(manager, mock_docker_client, settings):
    await manager.ensure_network()

    args, kwargs = mock_docker_client.networks.create.call_args
    assert args == (settings.network_name,)
    assert kwargs["driver"] == "bridge"


@pytest.mark.asyncio
async def test_ensure_network_skips_existing(manager, mock_docker_client, settings):
    network = MagicMock()
    network.name = settings.network_name
    mock_docker_client.networks.list.return_value = [network]

    await manager.ensure_network()

    mock_docker_client.networks.create.assert_not_called()


@pytest.mark.asyncio
async def test_pinned_present_image_is_not_pulled(manager, mock_docker_client):
    assert await manager.pull_image("caddy:2.8") is False

    mock_docker_client.images.pull.assert_not_called()


@pytest.mark.asyncio
async def test_latest_image_pulled_then_skipped_while_fresh(manager, mock_docker_client, db_manager):
    assert await manager.pull_image("mysql:latest") is True
    assert await manager.pull_image("mysql:latest") is False

    mock_docker_client.images.pull.assert_called_once_with("mysql:latest")
    async with db_manager.get_session() as session:
        assert await ImagePullRepository(session).get_last_pull("mysql:latest") is not None


@pytest.mark.asyncio
async def test_stale_latest_image_is_refreshed(manager, mock_docker_client, db_manager, settings):
    stale = datetime.now(timezone.utc) - timedelta(days=settings.image_refresh_days + 1)
    async with db_manager.get_session() as session:
        await ImagePullRepository(session).record_pull("mysql:latest", stale)

    assert await manager.pull_image("mysql:latest") is True


@pytest.mark.asyncio
async def test_pull_failure_raises(manager, mock_docker_client):
    mock_docker_client.images.pull.side_effect = APIError("manifest unknown")

    with pytest.raises(ImagePullError):
        await manager.pull_image("mysql:latest", force=True)


@pytest.mark.asyncio
async def test_create_container_merges_custom_config(manager, mock_docker_client, volume_manager, settings):
    mock_docker_client.containers.create.return_value = MagicMock(id="new123")
    config = ServiceConfig(
        image="mysql:latest",
        ports=((3306, 3306),),
        environment_vars=("MYSQL_ROOT_PASSWORD=root",),
        volume_bindings=("damp_mysql_data:/var/lib/mysql",),
    )

    container_id = await manager.create_container(
        config,
        CreateContainerOptions(labels=service_container_labels("mysql", "database")),
        CustomConfig(ports=((3307, 3306),), environment_vars=("TZ=UTC",)),
    )

    assert container_id == "new123"
    args, kwargs = mock_docker_client.containers.create.call_args
    assert args == ("mysql:latest",)
    assert kwargs["ports"] == {"3306/tcp": ("0.0.0.0", 3307)}
    assert kwargs["environment"] == ["MYSQL_ROOT_PASSWORD=root", "TZ=UTC"]
    assert kwargs["labels"]["com.damp.service-id"] == "mysql"
    assert kwargs["network"] == settings.network_name
    assert kwargs["restart_policy"] == {"Name": "unless-stopped"}
    volume_manager.ensure_volumes.assert_awaited_once()


@pytest.mark.asyncio
async def test_create_failure_raises_docker_error(manager, mock_docker_client):
    mock_docker_client.containers.create.side_effect = APIError("conflict")

    with pytest.raises(DockerAPIError):
        await manager.create_container(
            ServiceConfig(image="redis:alpine"),
            CreateContainerOptions(labels=service_container_labels("redis", "cache")),
        )


@pytest.mark.asyncio
async def test_remove_is_forced(manager, mock_container):
    await manager.remove_container("docker123")

    mock_container.remove.assert_called_once_with(force=True, v=False)


@pytest.mark.asyncio
async def test_missing_container(manager, mock_docker_client):
    mock_docker_client.containers.get.side_effect = NotFound("gone")

    with pytest.raises(ContainerNotFoundError):
        await manager.start_container("gone")
    assert await manager.get_container_state("gone") == ContainerState.not_found()
    assert await manager.wait_for_running("gone") is WaitOutcome.MISSING


@pytest.mark.asyncio
async def test_wait_for_running(manager, mock_container):
    mock_container.attrs = attrs()

    assert await manager.wait_for_running("docker123") is WaitOutcome.RUNNING


@pytest.mark.asyncio
async def test_wait_for_exited_container_is_fatal(manager, mock_container):
    mock_container.attrs = attrs(status="exited", running=False)

    assert await manager.wait_for_running("docker123") is WaitOutcome.FATAL
    with pytest.raises(ContainerExitedError):
        await manager.ensure_running("docker123")


@pytest.mark.asyncio
async def test_wait_times_out(manager, mock_container):
    mock_container.attrs = attrs(status="created", running=False)

    outcome = await manager.wait_for_running("docker123", timeout=0.05, interval=0.01)

    assert outcome is WaitOutcome.TIMEOUT


@pytest.mark.asyncio
async def test_exec_command_demuxes_output(manager, mock_container):
    mock_container.exec_run.return_value = MagicMock(exit_code=0, output=(b"db1\ndb2\n", None))

    result = await manager.exec_command("docker123", ["mysql", "-e", "SHOW DATABASES"])

    assert result.ok
    assert result.stdout == "db1\ndb2"
    assert result.stderr == ""
    assert result.raw_stdout == b"db1\ndb2\n"


@pytest.mark.asyncio
async def test_exec_without_exit_code(manager, mock_container):
    mock_container.exec_run.return_value = MagicMock(exit_code=None, output=(None, None))

    with pytest.raises(ExecExitCodeUnavailableError):
        await manager.exec_command("docker123", "true")


@pytest.mark.asyncio
async def test_exec_api_error_is_a_stream_error(manager, mock_container):
    mock_container.exec_run.side_effect = APIError("connection reset")

    with pytest.raises(ExecStreamError) as exc_info:
        await manager.exec_command("docker123", "true")

    assert not isinstance(exc_info.value, ExecExitCodeUnavailableError)


@pytest.mark.asyncio
async def test_file_round_trip(manager, mock_container):
    mock_container.put_archive.return_value = True
    await manager.put_file("docker123", "/etc/caddy/Caddyfile", b"site {}")

    directory, archive = mock_container.put_archive.call_args.args
    assert directory == "/etc/caddy"

    mock_container.get_archive.return_value = (iter([archive]), {"size": len(archive)})
    assert await manager.get_file("docker123", "/etc/caddy/Caddyfile") == b"site {}"


@pytest.mark.asyncio
async def test_get_missing_file(manager, mock_container):
    mock_container.get_archive.side_effect = NotFound("no such file")

    with pytest.raises(FileNotInArchiveError):
        await manager.get_file("docker123", "/missing")


@pytest.mark.asyncio
async def test_get_file_rejects_large_stat(manager, mock_container):
    mock_container.get_archive.return_value = (iter([b"x" * 10]), {"size": 2048})

    with pytest.raises(ArchiveTooLargeError):
        await manager.get_file("docker123", "/var/lib/dump.sql", max_size=1024)


@pytest.mark.asyncio
async def test_get_file_stops_reading_past_limit(manager, mock_container):
    chunks = iter([b"x" * 600, b"x" * 600, b"x" * 600])
    mock_container.get_archive.return_value = (chunks, {"size": 0})

    with pytest.raises(ArchiveTooLargeError):
        await manager.get_file("docker123", "/var/lib/dump.sql", max_size=1024)

    assert next(chunks) == b"x" * 600


class FollowStream:
    """Log stream that yields its chunks, then blocks until closed."""

    def __init__(self, chunks):
        self._queue = queue.Queue()
        for chunk in chunks:
            self._queue.put(chunk)

    def __iter__(self):
        while True:
            chunk = self._queue.get()
            if chunk is None:
                return
            yield chunk

    def close(self):
        self._queue.put(None)


async def collect(lines, count):
    for _ in range(200):
        if len(lines) >= count:
            return
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_log_stream_delivers_lines_and_closes(manager, mock_container):
    def logs(stdout, stderr, **kwargs):
        return FollowStream([b"hello\nwor", b"ld\n"] if stdout else [b"warning\n"])

    mock_container.logs.side_effect = logs
    lines = []

    handle = await manager.stream_logs("docker123", lambda line, name: lines.append((line, name)))
    await collect(lines, 3)

    assert ("hello", "stdout") in lines
    assert ("world", "stdout") in lines
    assert ("warning", "stderr") in lines
    assert manager.open_log_streams == 1

    assert await manager.close_all_log_streams() == 1
    assert handle.stopped
    assert manager.open_log_streams == 0
    handle.stop()


@pytest.mark.asyncio
async def test_finished_log_stream_releases_itself(manager, mock_container):
    def logs(stdout, stderr, **kwargs):
        stream = MagicMock()
        stream.__iter__.return_value = iter([b"done\n"] if stdout else [])
        return stream

    mock_container.logs.side_effect = logs
    lines = []

    handle = await manager.stream_logs("docker123", lambda line, name: lines.append((line, name)))
    for _ in range(200):
        if handle.stopped:
            break
        await asyncio.sleep(0.01)

    assert lines == [("done", "stdout")]
    assert handle.stopped
    assert manager.open_log_streams == 0
    assert await manager.close_all_log_streams() == 0
