"""Unit tests for ServiceStateManager."""

from unittest.mock import AsyncMock, MagicMock, create_autospec

import pytest

from damp_orchestrator.managers.container_manager import ContainerState
from damp_orchestrator.managers.proxy_sync import ProxySync
from damp_orchestrator.managers.service_state_manager import InstallOptions, ServiceStateManager
from damp_orchestrator.repositories import ServiceStateRepository
from damp_orchestrator.results import HookResult, Result
from damp_orchestrator.service_config import CustomConfig
from damp_orchestrator.utils.audit_logger import AuditLogger
from damp_orchestrator.utils.exceptions import DockerAPIError, ImagePullError


@pytest.fixture
def proxy_sync():
    sync = create_autospec(ProxySync, instance=True)
    sync.sync.return_value = Result.ok()
    return sync


@pytest.fixture
def manager(container_manager, volume_manager, db_manager, proxy_sync):
    return ServiceStateManager(
        container_manager,
        volume_manager,
        db_manager,
        proxy_sync=proxy_sync,
        audit_logger=AuditLogger(),
    )


def installed(container_manager, running=True, container_id="svc123", ports=None):
    """Make every service lookup find one container in the given state."""
    container = MagicMock()
    container.id = container_id
    container_manager.find_service_container.return_value = container
    container_manager.get_container_state.return_value = ContainerState(
        exists=True,
        running=running,
        container_id=container_id,
        state="running" if running else "exited",
        ports=ports or [],
    )
    return container


async def recorded_services(db_manager):
    async with db_manager.get_session() as session:
        return await ServiceStateRepository(session).service_ids()


@pytest.mark.asyncio
async def test_install_unknown_service(manager):
    result = await manager.install_service("oracle")

    assert not result.success
    assert result.error == "Service oracle not found"


@pytest.mark.asyncio
async def test_install_requires_docker(manager, container_manager):
    container_manager.is_docker_available.return_value = False

    result = await manager.install_service("mysql")

    assert result.error == "Docker is not running. Please start Docker and try again."
    container_manager.pull_image.assert_not_awaited()


@pytest.mark.asyncio
async def test_install_creates_and_starts(manager, container_manager, db_manager):
    container_manager.create_container.return_value = "svc123"
    container_manager.get_container_state.return_value = ContainerState(
        exists=True, running=True, container_id="svc123", ports=[(3307, 3306)]
    )

    result = await manager.install_service("mysql")

    assert result.success
    assert result.data["container_id"] == "svc123"
    assert result.data["ports"] == [[3307, 3306]]
    assert "MySQL" in result.data["message"]
    container_manager.pull_image.assert_awaited_once_with("mysql:latest")
    container_manager.start_container.assert_awaited_once_with("svc123")

    options = container_manager.create_container.call_args.args[1]
    assert options.labels.service_id == "mysql"
    assert options.volume_labels["damp_mysql_data"].service_id == "mysql"
    assert await recorded_services(db_manager) == {"mysql"}


@pytest.mark.asyncio
async def test_install_without_starting(manager, container_manager):
    container_manager.create_container.return_value = "svc123"

    result = await manager.install_service("redis", InstallOptions(start_immediately=False))

    assert result.success
    container_manager.start_container.assert_not_awaited()


@pytest.mark.asyncio
async def test_install_persists_custom_config(manager, container_manager, db_manager):
    container_manager.create_container.return_value = "svc123"
    custom = CustomConfig(ports=((3307, 3306),), volume_bindings=("mydata:/var/lib/mysql",))

    await manager.install_service("mysql", InstallOptions(custom_config=custom))

    options = container_manager.create_container.call_args.args[1]
    assert list(options.volume_labels) == ["mydata"]
    async with db_manager.get_session() as session:
        record = await ServiceStateRepository(session).get("mysql")
    assert record.custom_config == custom.to_dict()


@pytest.mark.asyncio
async def test_install_failure_is_reported(manager, container_manager, db_manager):
    container_manager.pull_image.side_effect = ImagePullError("mysql:latest", Exception("offline"))

    result = await manager.install_service("mysql")

    assert not result.success
    assert "Failed to pull image mysql:latest" in result.error
    assert await recorded_services(db_manager) == set()


@pytest.mark.asyncio
async def test_caddy_hook_sets_certificate_flag(manager, container_manager):
    container_manager.create_container.return_value = "caddy123"
    container_manager.get_container_state.return_value = ContainerState(
        exists=True, running=True, container_id="caddy123"
    )
    hook = AsyncMock(return_value=HookResult(success=True, data={"cert_installed": True}))
    manager.register_hook("caddy", hook)

    result = await manager.install_service("caddy")

    assert result.success
    context = hook.await_args.args[0]
    assert context.service_id == "caddy"
    assert context.container_id == "caddy123"
    assert await manager.get_caddy_cert_installed() is True


@pytest.mark.asyncio
async def test_failing_hook_does_not_fail_install(manager, container_manager):
    container_manager.create_container.return_value = "caddy123"
    manager.register_hook("caddy", AsyncMock(side_effect=RuntimeError("hook exploded")))

    result = await manager.install_service("caddy")

    assert result.success
    assert await manager.get_caddy_cert_installed() is False


@pytest.mark.asyncio
async def test_hook_starts_stopped_container(manager, container_manager):
    container_manager.create_container.return_value = "caddy123"
    container_manager.get_container_state.return_value = ContainerState(
        exists=True, running=False, container_id="caddy123"
    )
    manager.register_hook("caddy", AsyncMock(return_value=HookResult(success=False)))

    await manager.install_service("caddy", InstallOptions(start_immediately=False))

    container_manager.start_container.assert_awaited_once_with("caddy123")


@pytest.mark.asyncio
async def test_service_state_queries(manager, container_manager):
    assert await manager.get_service_container_state("oracle") is None
    assert await manager.get_service_container_state("mysql") == ContainerState.not_found()

    installed(container_manager)
    state = await manager.get_service_container_state("mysql", project_id="p_1")

    assert state.running
    container_manager.find_service_container.assert_awaited_with("mysql", "p_1")


@pytest.mark.asyncio
async def test_all_service_states(manager, container_manager, db_manager):
    async with db_manager.get_session() as session:
        await ServiceStateRepository(session).mark_installed("redis")

    states = await manager.get_all_service_states()

    by_id = {entry["service"]["id"]: entry for entry in states}
    assert by_id["redis"]["installed"] is True
    assert by_id["mysql"]["installed"] is False
    assert by_id["mysql"]["state"]["exists"] is False


@pytest.mark.asyncio
async def test_uninstall_not_installed(manager):
    result = await manager.uninstall_service("mysql")

    assert result.error == "Service mysql is not installed"


@pytest.mark.asyncio
async def test_uninstall_removes_container_volumes_and_record(
    manager, container_manager, volume_manager, db_manager
):
    installed(container_manager)
    async with db_manager.get_session() as session:
        await ServiceStateRepository(session).mark_installed("mysql")

    result = await manager.uninstall_service("mysql")

    assert result.data == {"message": "Service mysql uninstalled successfully"}
    container_manager.remove_container.assert_awaited_once_with("svc123", remove_volumes=False)
    volume_manager.remove_service_volumes_by_label.assert_awaited_once_with("mysql")
    volume_manager.remove_service_volumes.assert_awaited_once_with(["damp_mysql_data"])
    assert await recorded_services(db_manager) == set()


@pytest.mark.asyncio
async def test_uninstall_keeping_volumes(manager, container_manager, volume_manager):
    installed(container_manager)

    result = await manager.uninstall_service("mysql", remove_volumes=False)

    assert result.success
    volume_manager.remove_service_volumes_by_label.assert_not_awaited()
    volume_manager.remove_service_volumes.assert_not_awaited()


@pytest.mark.asyncio
async def test_uninstall_caddy_clears_certificate_flag(manager, container_manager):
    installed(container_manager, container_id="caddy123")
    await manager.set_caddy_cert_installed(True)

    await manager.uninstall_service("caddy")

    assert await manager.get_caddy_cert_installed() is False


@pytest.mark.asyncio
async def test_uninstall_docker_failure(manager, container_manager):
    installed(container_manager)
    container_manager.remove_container.side_effect = DockerAPIError("Failed to remove container: busy")

    result = await manager.uninstall_service("mysql")

    assert not result.success
    assert result.error == "Failed to remove container: busy"


@pytest.mark.asyncio
async def test_start_missing_container(manager):
    result = await manager.start_service("redis")

    assert result.error == "Container for service redis does not exist"


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent(manager, container_manager):
    installed(container_manager, running=True)
    result = await manager.start_service("redis")
    assert result.data == {"message": "Service redis is already running"}

    installed(container_manager, running=False)
    result = await manager.stop_service("redis")
    assert result.data == {"message": "Service redis is already stopped"}

    container_manager.start_container.assert_not_awaited()
    container_manager.stop_container.assert_not_awaited()


@pytest.mark.asyncio
async def test_start_caddy_syncs_projects(manager, container_manager, proxy_sync):
    installed(container_manager, running=False, container_id="caddy123")

    result = await manager.start_service("caddy")

    assert result.data == {"message": "Service caddy started successfully"}
    container_manager.start_container.assert_awaited_once_with("caddy123")
    proxy_sync.sync.assert_awaited_once()


@pytest.mark.asyncio
async def test_failed_proxy_sync_does_not_fail_start(manager, container_manager, proxy_sync):
    installed(container_manager, running=False, container_id="caddy123")
    proxy_sync.sync.return_value = Result.fail("reload failed")

    result = await manager.start_service("caddy")

    assert result.success


@pytest.mark.asyncio
async def test_start_other_service_does_not_sync(manager, container_manager, proxy_sync):
    installed(container_manager, running=False)

    await manager.start_service("redis")

    proxy_sync.sync.assert_not_awaited()


@pytest.mark.asyncio
async def test_stop_and_restart(manager, container_manager):
    installed(container_manager, running=True)

    stopped = await manager.stop_service("mysql")
    restarted = await manager.restart_service("mysql")

    assert stopped.data == {"message": "Service mysql stopped successfully"}
    assert restarted.data == {"message": "Service mysql restarted successfully"}
    container_manager.stop_container.assert_awaited_once_with("svc123")
    container_manager.restart_container.assert_awaited_once_with("svc123")


@pytest.mark.asyncio
async def test_update_keeps_volumes_and_custom_config(
    manager, container_manager, volume_manager, db_manager
):
    installed(container_manager)
    container_manager.create_container.return_value = "svc456"
    custom = CustomConfig(environment_vars=("TZ=UTC",))
    async with db_manager.get_session() as session:
        await ServiceStateRepository(session).mark_installed("mysql", custom.to_dict())

    result = await manager.update_service("mysql")

    assert result.success
    container_manager.remove_container.assert_awaited_once_with("svc123", remove_volumes=False)
    volume_manager.remove_service_volumes.assert_not_awaited()
    assert container_manager.create_container.call_args.args[2] == custom
    assert await recorded_services(db_manager) == {"mysql"}


@pytest.mark.asyncio
async def test_update_not_installed(manager):
    result = await manager.update_service("mysql")

    assert result.error == "Service mysql is not installed"
