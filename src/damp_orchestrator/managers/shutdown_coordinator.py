"""Shutdown coordinator for graceful server shutdown."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from damp_orchestrator.config import Settings, get_settings
from damp_orchestrator.managers.container_manager import ContainerManager
from damp_orchestrator.managers.event_monitor import EventMonitor
from damp_orchestrator.models.database import DatabaseManager
from damp_orchestrator.utils import get_logger
from damp_orchestrator.utils.cleanup import best_effort, best_effort_sync
from damp_orchestrator.utils.docker_client import DockerClientManager

logger = get_logger(__name__)


class ShutdownCoordinator:
    """Coordinator for graceful server shutdown."""

    def __init__(
        self,
        event_monitor: EventMonitor,
        container_manager: ContainerManager,
        db_manager: DatabaseManager,
        docker_client_manager: DockerClientManager,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize shutdown coordinator.

        Args:
            event_monitor: Event monitor to stop
            container_manager: Owner of the open log streams
            db_manager: Database manager to close
            docker_client_manager: Owner of the daemon connection
            settings: Application settings with the drain grace period
        """
        self.event_monitor = event_monitor
        self.container_manager = container_manager
        self.db_manager = db_manager
        self.docker_client_manager = docker_client_manager
        self.settings = settings or get_settings()
        self._shutdown_initiated = False
        self._shutdown_event = asyncio.Event()
        self._active_operations = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def is_shutting_down(self) -> bool:
        """
        Check if shutdown has been initiated.

        Returns:
            True if shutdown is in progress
        """
        return self._shutdown_initiated

    @property
    def active_operations(self) -> int:
        return self._active_operations

    @asynccontextmanager
    async def track_operation(self) -> AsyncIterator[None]:
        """Mark an operation as in flight so shutdown drains it first."""
        self._active_operations += 1
        self._idle.clear()
        try:
            yield
        finally:
            self._active_operations -= 1
            if self._active_operations == 0:
                self._idle.set()

    async def initiate_shutdown(self) -> None:
        """
        Initiate graceful shutdown sequence.

        This method:
        1. Sets shutdown flag to stop accepting new requests
        2. Drains active operations up to DAMP_DRAIN_GRACE_S
        3. Stops the Docker event subscription
        4. Closes every open log stream
        5. Closes the database and the Docker client

        Calling it again after the first call is a no-op.
        """
        if self._shutdown_initiated:
            logger.warning("Shutdown already initiated")
            return

        self._shutdown_initiated = True
        logger.info("Initiating graceful shutdown")

        await self._drain_operations()

        async with best_effort("stop event monitor"):
            await self.event_monitor.stop()

        async with best_effort("close log streams"):
            closed = await self.container_manager.close_all_log_streams()
            logger.info("Log streams closed", extra={"count": closed})

        async with best_effort("close database"):
            await self.db_manager.close()

        with best_effort_sync("close Docker client"):
            self.docker_client_manager.close()

        self._shutdown_event.set()
        logger.info("Graceful shutdown completed")

    async def _drain_operations(self) -> None:
        """
        Drain active operations with timeout.

        Waits up to DAMP_DRAIN_GRACE_S for tracked operations to complete.
        """
        grace_period = self.settings.drain_grace_s
        logger.info(
            "Draining active operations",
            extra={"grace_period_s": grace_period, "active": self._active_operations},
        )

        try:
            await asyncio.wait_for(self._idle.wait(), timeout=grace_period)
            logger.info("Active operations drained")
        except asyncio.TimeoutError:
            logger.warning(
                "Drain timeout reached, forcing shutdown",
                extra={"grace_period_s": grace_period, "active": self._active_operations},
            )

    async def wait_for_shutdown(self) -> None:
        """Wait for shutdown to complete."""
        await self._shutdown_event.wait()

