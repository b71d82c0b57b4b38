"""Unit tests for VolumeManager."""

from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, NotFound

from damp_orchestrator.labels import helper_container_labels, service_volume_labels
from damp_orchestrator.managers.volume_manager import (
    COPY_COMPLETED,
    COPY_STARTING,
    VolumeManager,
    host_uid_gid,
    normalize_path_for_docker,
    parse_rsync_progress,
    rsync_exclusions,
)
from damp_orchestrator.utils.exceptions import (
    DockerAPIError,
    VolumeInUseError,
    VolumeNotFoundError,
    VolumeOperationError,
)
from damp_orchestrator.utils.metrics_collector import MetricsCollector


@pytest.fixture
def mock_docker_client():
    return MagicMock()


@pytest.fixture
def manager(mock_docker_client, settings):
    return VolumeManager(mock_docker_client, settings, MetricsCollector())


def api_error(status_code, message="error"):
    return APIError(message, response=MagicMock(status_code=status_code))


def test_parse_rsync_progress():
    assert parse_rsync_progress("      1,234,567  45%  123.45kB/s    0:00:12") == (1234567, 45)
    assert parse_rsync_progress("sending incremental file list") is None


def test_normalize_path_for_docker():
    assert normalize_path_for_docker("C:\\Users\\dev\\blog", platform="win32") == "/c/Users/dev/blog"
    assert normalize_path_for_docker("/home/dev/blog", platform="linux") == "/home/dev/blog"


def test_host_uid_gid_on_windows():
    assert host_uid_gid(platform="win32") == "1000:1000"


def test_rsync_exclusions():
    assert rsync_exclusions() == ["--exclude=node_modules", "--exclude=vendor"]
    assert rsync_exclusions(include_node_modules=True, include_vendor=True) == []


@pytest.mark.asyncio
async def test_create_volume_skips_existing(manager, mock_docker_client):
    created = await manager.create_volume("damp_mysql_data", service_volume_labels("mysql", "damp_mysql_data"))

    assert created is False
    mock_docker_client.volumes.create.assert_not_called()


@pytest.mark.asyncio
async def test_create_volume_applies_labels(manager, mock_docker_client):
    mock_docker_client.volumes.get.side_effect = NotFound("missing")

    created = await manager.create_volume("damp_mysql_data", service_volume_labels("mysql", "damp_mysql_data"))

    assert created is True
    kwargs = mock_docker_client.volumes.create.call_args.kwargs
    assert kwargs["name"] == "damp_mysql_data"
    assert kwargs["labels"]["com.damp.service-id"] == "mysql"
    assert kwargs["labels"]["com.damp.volume-name"] == "damp_mysql_data"


@pytest.mark.asyncio
async def test_ensure_volumes_uses_default_labels(manager, mock_docker_client):
    mock_docker_client.volumes.get.side_effect = NotFound("missing")
    seen = []

    def default_labels(name):
        seen.append(name)
        return service_volume_labels("caddy", name)

    created = await manager.ensure_volumes(
        ["damp_caddy_data:/data", "/srv/site:/srv", "damp_caddy_config:/config"],
        {"damp_caddy_data": service_volume_labels("caddy", "damp_caddy_data")},
        default_labels,
    )

    assert created == ["damp_caddy_data", "damp_caddy_config"]
    assert seen == ["damp_caddy_config"]


@pytest.mark.asyncio
async def test_remove_missing_volume_is_noop(manager, mock_docker_client):
    mock_docker_client.volumes.get.side_effect = NotFound("missing")

    await manager.remove_volume("gone")


@pytest.mark.asyncio
async def test_remove_volume_race_with_404_is_noop(manager, mock_docker_client):
    mock_docker_client.volumes.get.return_value.remove.side_effect = api_error(404, "no such volume")

    await manager.remove_volume("racing")


@pytest.mark.asyncio
async def test_remove_volume_in_use(manager, mock_docker_client):
    mock_docker_client.volumes.get.return_value.remove.side_effect = api_error(409, "volume is in use")

    with pytest.raises(VolumeInUseError):
        await manager.remove_volume("busy")


@pytest.mark.asyncio
async def test_remove_volume_other_error(manager, mock_docker_client):
    mock_docker_client.volumes.get.return_value.remove.side_effect = api_error(500, "boom")

    with pytest.raises(DockerAPIError):
        await manager.remove_volume("broken")


@pytest.mark.asyncio
async def test_remove_service_volumes_reports_failures(manager, mock_docker_client):
    volumes = {"ok": MagicMock(), "busy": MagicMock()}
    volumes["busy"].remove.side_effect = api_error(409, "volume is in use")
    mock_docker_client.volumes.get.side_effect = lambda name: volumes[name]

    assert await manager.remove_service_volumes(["ok", "busy"]) == ["busy"]


@pytest.mark.asyncio
async def test_remove_service_volumes_by_label(manager, mock_docker_client):
    volume = MagicMock()
    volume.name = "damp_mysql_data"
    mock_docker_client.volumes.list.return_value = [volume]

    removed = await manager.remove_service_volumes_by_label("mysql")

    assert removed == ["damp_mysql_data"]
    filters = mock_docker_client.volumes.list.call_args.kwargs["filters"]["label"]
    assert filters[0] == "com.damp.managed=true"
    assert "com.damp.service-id=mysql" in filters


@pytest.mark.asyncio
async def test_copy_to_volume_reports_progress_and_removes_helper(manager, mock_docker_client):
    helper = MagicMock()
    helper.id = "helper1"
    helper.wait.return_value = {"StatusCode": 0}
    mock_docker_client.containers.create.return_value = helper
    events = []

    await manager.copy_to_volume("/home/dev/blog", "damp_project_blog", "p_1", events.append)

    assert events[0] == COPY_STARTING
    assert events[-1] == COPY_COMPLETED
    kwargs = mock_docker_client.containers.create.call_args.kwargs
    assert "/home/dev/blog:/source:ro" in kwargs["volumes"]
    assert kwargs["labels"]["com.damp.type"] == "helper-container"
    helper.remove.assert_called_once_with(force=True)


@pytest.mark.asyncio
async def test_failed_helper_raises_and_is_removed(manager, mock_docker_client):
    helper = MagicMock()
    helper.wait.return_value = {"StatusCode": 2}
    helper.logs.return_value = b"tar: error"
    mock_docker_client.containers.create.return_value = helper

    with pytest.raises(VolumeOperationError) as exc_info:
        await manager.run_helper(
            image="alpine:latest",
            command=["false"],
            binds=[],
            labels=helper_container_labels("volume-copy"),
            volume_name="vol",
            timeout_s=1,
        )

    assert "tar: error" in str(exc_info.value)
    helper.remove.assert_called_once_with(force=True)


@pytest.mark.asyncio
async def test_sync_from_missing_volume(manager, mock_docker_client):
    mock_docker_client.volumes.get.side_effect = NotFound("missing")

    with pytest.raises(VolumeNotFoundError):
        await manager.sync_from_volume("gone", "/tmp/out", "p_1")
