"""Integration tests for ContainerManager and VolumeManager with real Docker."""

import uuid

import pytest

from damp_orchestrator.config import Settings
from damp_orchestrator.labels import service_container_labels
from damp_orchestrator.managers.container_manager import (
    ContainerManager,
    ContainerState,
    CreateContainerOptions,
    WaitOutcome,
)
from damp_orchestrator.managers.volume_manager import VolumeManager
from damp_orchestrator.models.database import DatabaseManager
from damp_orchestrator.service_config import ServiceConfig
from damp_orchestrator.utils.docker_client import DockerClientManager
from damp_orchestrator.utils.exceptions import ContainerNotFoundError

IMAGE = "redis:7-alpine"

pytestmark = [pytest.mark.integration, pytest.mark.usefixtures("require_docker")]


@pytest.fixture
def suffix():
    return uuid.uuid4().hex[:8]


@pytest.fixture
def docker_settings(tmp_path, suffix):
    return Settings(
        state_db=str(tmp_path / "state.db"),
        network_name=f"damp-itest-{suffix}",
        running_wait_timeout_s=30,
    )


@pytest.fixture
async def managers(docker_settings):
    client_manager = DockerClientManager(docker_settings)
    client = client_manager.get_client()
    db_manager = DatabaseManager(docker_settings)
    await db_manager.create_tables()
    volume_manager = VolumeManager(client, docker_settings)
    container_manager = ContainerManager(
        client, db_manager, docker_settings, volume_manager=volume_manager
    )
    yield container_manager, volume_manager

    await container_manager.close_all_log_streams()
    for network in client.networks.list(names=[docker_settings.network_name]):
        try:
            network.remove()
        except Exception:
            pass  # Ignore cleanup errors in test teardown
    await db_manager.close()
    client_manager.close()


@pytest.mark.asyncio
async def test_service_container_round_trip(managers, suffix):
    """Create, start, exec, copy files, inspect and remove a labelled container."""
    container_manager, volume_manager = managers
    service_id = f"itest-{suffix}"
    volume_name = f"damp_itest_{suffix}_data"
    labels = service_container_labels(service_id, "cache")

    await container_manager.pull_image(IMAGE)
    container_id = await container_manager.create_container(
        ServiceConfig(image=IMAGE, ports=((6379, 6379),), volume_bindings=(f"{volume_name}:/data",)),
        CreateContainerOptions(labels=labels, name=f"damp-itest-{suffix}"),
    )

    try:
        assert await volume_manager.volume_exists(volume_name)

        await container_manager.start_container(container_id)
        assert await container_manager.wait_for_running(container_id) is WaitOutcome.RUNNING

        state = await container_manager.get_container_state(container_id)
        assert state.running
        assert len(state.ports) == 1
        assert state.ports[0][1] == 6379

        found = await container_manager.find_service_container(service_id)
        assert found is not None and found.id == container_id

        result = await container_manager.exec_command(container_id, ["redis-cli", "ping"])
        assert result.ok
        assert result.stdout.strip() == "PONG"

        await container_manager.put_file(container_id, "/data/hello.txt", b"hello damp")
        assert await container_manager.get_file(container_id, "/data/hello.txt") == b"hello damp"

        await container_manager.stop_container(container_id, timeout=2)
        assert not (await container_manager.get_container_state(container_id)).running
    finally:
        await container_manager.remove_container(container_id)
        await volume_manager.remove_volume(volume_name)

    assert not (await container_manager.get_container_state(container_id)).exists
    assert not await volume_manager.volume_exists(volume_name)
    with pytest.raises(ContainerNotFoundError):
        await container_manager.start_container(container_id)


@pytest.mark.asyncio
async def test_removing_a_missing_volume_is_idempotent(managers, suffix):
    _, volume_manager = managers

    await volume_manager.remove_volume(f"damp_itest_{suffix}_missing")


@pytest.mark.asyncio
async def test_labelled_lookup_finds_nothing_for_unknown_owner(managers, suffix):
    container_manager, _ = managers

    state = await container_manager.get_container_state_by_labels(
        service_container_labels(f"itest-none-{suffix}", "cache")
    )

    assert state == ContainerState.not_found()
