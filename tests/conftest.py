"""Test configuration and fixtures."""

from datetime import datetime, timezone
from typing import AsyncGenerator
from unittest.mock import create_autospec
from uuid import uuid4

import pytest

from damp_orchestrator.config import Settings
from damp_orchestrator.managers.container_manager import ContainerManager, ContainerState
from damp_orchestrator.managers.volume_manager import VolumeManager
from damp_orchestrator.models.database import DatabaseManager
from damp_orchestrator.models.projects import Project
from damp_orchestrator.repositories.projects import ProjectRepository
from damp_orchestrator.utils.docker_client import DockerClientManager


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing every path into a temporary directory, with short timings."""
    hosts_file = tmp_path / "hosts"
    hosts_file.write_text("127.0.0.1 localhost\n")
    return Settings(
        state_db=str(tmp_path / "state.db"),
        hosts_file=str(hosts_file),
        running_wait_timeout_s=0.5,
        running_wait_interval_s=0.01,
        cert_wait_timeout_s=0.2,
        cert_wait_interval_s=0.01,
        event_ping_interval_s=0.05,
        event_backoff_base_s=0.01,
        event_backoff_max_s=0.05,
        drain_grace_s=1,
    )


@pytest.fixture
async def db_manager(settings) -> AsyncGenerator[DatabaseManager, None]:
    """Database manager backed by a fresh SQLite file."""
    manager = DatabaseManager(settings)
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
def container_manager() -> ContainerManager:
    """Container manager double with async methods as AsyncMock."""
    manager = create_autospec(ContainerManager, instance=True)
    manager.is_docker_available.return_value = True
    manager.find_service_container.return_value = None
    manager.find_project_container.return_value = None
    manager.get_container_state.return_value = ContainerState.not_found()
    return manager


@pytest.fixture
def volume_manager() -> VolumeManager:
    manager = create_autospec(VolumeManager, instance=True)
    manager.remove_service_volumes.return_value = []
    return manager


@pytest.fixture(scope="session")
def docker_available():
    """Check if Docker daemon is available."""
    try:
        client = DockerClientManager(Settings()).get_client()
        client.ping()
        return True
    except Exception:
        return False


@pytest.fixture
def require_docker(docker_available):
    """Skip test if Docker is not available."""
    if not docker_available:
        pytest.skip("Docker daemon not available - skipping integration test")


@pytest.fixture
def project_factory(db_manager):
    """Persist projects with sensible defaults."""

    async def create(name: str = "blog", **overrides) -> Project:
        now = datetime.now(timezone.utc)
        values = {
            "id": str(uuid4()),
            "name": name,
            "type": "basic-php",
            "import_method": "create",
            "path": f"/home/dev/projects/{name}",
            "volume_name": f"damp_project_{name}",
            "domain": f"{name}.local",
            "php_version": "8.3",
            "php_variant": "fpm-apache",
            "node_version": "lts",
            "php_extensions": [],
            "enable_claude_ai": False,
            "forwarded_port": 8443,
            "network_name": "damp-network",
            "bundled_services": [],
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        async with db_manager.get_session() as session:
            project = await ProjectRepository(session).create(Project(**values))
        return project

    return create
