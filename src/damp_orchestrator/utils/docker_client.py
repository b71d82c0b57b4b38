"""Docker client utilities for DAMP Orchestrator."""

import docker
from docker import DockerClient
from docker.errors import DockerException

from damp_orchestrator.config import Settings, get_settings
from damp_orchestrator.utils import get_logger

logger = get_logger(__name__)


class DockerClientManager:
    """Manages the single Docker client connection shared by every manager."""

    def __init__(self, settings: Settings | None = None) -> None:
        """
        Initialize Docker client manager.

        Args:
            settings: Settings to read the daemon address from
        """
        self._client: DockerClient | None = None
        self.settings = settings or get_settings()

    def get_client(self) -> DockerClient:
        """
        Get or create Docker client instance.

        The client is created without pinging so that the application can
        start while the daemon is down; reachability is checked per operation.

        Returns:
            DockerClient instance

        Raises:
            DockerException: If the client cannot be configured
        """
        if self._client is None:
            try:
                if self.settings.docker_host:
                    self._client = docker.DockerClient(base_url=self.settings.docker_host)
                else:
                    self._client = docker.from_env()
                logger.info(
                    "Docker client configured",
                    extra={"docker_host": self.settings.docker_host or "default"},
                )
            except DockerException as e:
                logger.error("Failed to configure Docker client", extra={"error": str(e)})
                raise

        return self._client

    def close(self) -> None:
        """Close Docker client connection."""
        if self._client:
            self._client.close()
            self._client = None
            logger.info("Docker client connection closed")
