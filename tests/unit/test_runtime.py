"""Unit tests for runtime wiring."""

from unittest.mock import AsyncMock, MagicMock, create_autospec

import pytest

from damp_orchestrator.managers.certificate_bootstrap import CertificateBootstrap
from damp_orchestrator.runtime import build_runtime
from damp_orchestrator.utils.docker_client import DockerClientManager
from damp_orchestrator.utils.exceptions import DockerAPIError


@pytest.fixture
def docker_client_manager():
    manager = create_autospec(DockerClientManager, instance=True)
    manager.get_client.return_value = MagicMock()
    return manager


@pytest.fixture
def runtime(settings, db_manager, docker_client_manager):
    return build_runtime(settings, db_manager, docker_client_manager)


def test_collaborators_are_shared(runtime, docker_client_manager):
    client = docker_client_manager.get_client.return_value

    assert runtime.container_manager.docker_client is client
    assert runtime.event_monitor.docker_client is client
    assert runtime.project_state_manager.proxy_sync is runtime.proxy_sync
    assert runtime.service_state_manager.proxy_sync is runtime.proxy_sync
    assert runtime.resource_reconciler.project_state_manager is runtime.project_state_manager
    assert runtime.shutdown_coordinator.event_monitor is runtime.event_monitor


def test_caddy_install_runs_certificate_bootstrap(runtime):
    hook = runtime.service_state_manager.hooks["caddy"]

    assert isinstance(hook, CertificateBootstrap)
    assert hook is runtime.certificate_bootstrap


@pytest.mark.asyncio
async def test_start_tolerates_docker_down(runtime):
    runtime.container_manager.ensure_network = AsyncMock(
        side_effect=DockerAPIError("Cannot connect to the Docker daemon")
    )
    runtime.event_monitor.start = AsyncMock()

    await runtime.start()

    runtime.event_monitor.start.assert_awaited_once()


@pytest.mark.asyncio
async def test_shutdown_runs_coordinator(runtime, docker_client_manager):
    runtime.event_monitor.stop = AsyncMock()

    await runtime.shutdown()

    assert runtime.shutdown_coordinator.is_shutting_down()
    docker_client_manager.close.assert_called_once()
