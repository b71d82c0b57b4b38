"""Tests for ShutdownCoordinator."""

import asyncio
from unittest.mock import create_autospec

import pytest

from damp_orchestrator.managers.event_monitor import EventMonitor
from damp_orchestrator.managers.shutdown_coordinator import ShutdownCoordinator
from damp_orchestrator.models.database import DatabaseManager
from damp_orchestrator.utils.docker_client import DockerClientManager


@pytest.fixture
def parts(container_manager):
    """Mocked dependencies keyed by role."""
    container_manager.close_all_log_streams.return_value = 2
    return {
        "event_monitor": create_autospec(EventMonitor, instance=True),
        "container_manager": container_manager,
        "db_manager": create_autospec(DatabaseManager, instance=True),
        "docker_client_manager": create_autospec(DockerClientManager, instance=True),
    }


@pytest.fixture
def coordinator(parts, settings):
    return ShutdownCoordinator(settings=settings, **parts)


@pytest.mark.asyncio
async def test_shutdown_sets_flag(coordinator):
    """Test that shutdown sets the shutdown flag."""
    assert not coordinator.is_shutting_down()

    await coordinator.initiate_shutdown()

    assert coordinator.is_shutting_down()


@pytest.mark.asyncio
async def test_shutdown_releases_everything(coordinator, parts):
    """Test that shutdown stops events, closes streams, database and client."""
    await coordinator.initiate_shutdown()

    parts["event_monitor"].stop.assert_awaited_once()
    parts["container_manager"].close_all_log_streams.assert_awaited_once()
    parts["db_manager"].close.assert_awaited_once()
    parts["docker_client_manager"].close.assert_called_once()


@pytest.mark.asyncio
async def test_shutdown_is_idempotent(coordinator, parts):
    """Test that a second shutdown is a no-op."""
    await coordinator.initiate_shutdown()
    await coordinator.initiate_shutdown()

    parts["event_monitor"].stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_one_failing_step_does_not_block_the_rest(coordinator, parts):
    """Test that every release step runs even when an earlier one fails."""
    parts["event_monitor"].stop.side_effect = RuntimeError("stuck")
    parts["db_manager"].close.side_effect = RuntimeError("locked")

    await coordinator.initiate_shutdown()

    parts["container_manager"].close_all_log_streams.assert_awaited_once()
    parts["docker_client_manager"].close.assert_called_once()


@pytest.mark.asyncio
async def test_shutdown_waits_for_active_operations(coordinator, parts):
    """Test that in-flight operations finish before resources are released."""
    release = asyncio.Event()
    order = []

    async def operation():
        async with coordinator.track_operation():
            await release.wait()
            order.append("operation")

    parts["event_monitor"].stop.side_effect = lambda: order.append("stop")

    task = asyncio.create_task(operation())
    await asyncio.sleep(0)
    assert coordinator.active_operations == 1

    shutdown = asyncio.create_task(coordinator.initiate_shutdown())
    await asyncio.sleep(0.05)
    assert order == []

    release.set()
    await asyncio.gather(task, shutdown)

    assert order == ["operation", "stop"]
    assert coordinator.active_operations == 0


@pytest.mark.asyncio
async def test_drain_times_out(parts, settings):
    """Test that a stuck operation does not block shutdown past the grace period."""
    settings.drain_grace_s = 0
    coordinator = ShutdownCoordinator(settings=settings, **parts)
    never = asyncio.Event()

    async def stuck():
        async with coordinator.track_operation():
            await never.wait()

    task = asyncio.create_task(stuck())
    await asyncio.sleep(0)

    await asyncio.wait_for(coordinator.initiate_shutdown(), timeout=1)

    parts["db_manager"].close.assert_awaited_once()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert coordinator.active_operations == 0


@pytest.mark.asyncio
async def test_wait_for_shutdown(coordinator):
    """Test that waiters are released once shutdown completes."""
    waiter = asyncio.create_task(coordinator.wait_for_shutdown())
    await asyncio.sleep(0)
    assert not waiter.done()

    await coordinator.initiate_shutdown()

    await asyncio.wait_for(waiter, timeout=1)


@pytest.mark.asyncio
async def test_operation_tracking_survives_errors(coordinator):
    """Test that the in-flight counter is released when an operation raises."""
    with pytest.raises(ValueError):
        async with coordinator.track_operation():
            raise ValueError("boom")

    assert coordinator.active_operations == 0
